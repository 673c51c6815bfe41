import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone  # noqa: E402

import orjson  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event as sa_event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from hobbyhub.db.base import Base  # noqa: E402
from hobbyhub.models import Event, User, UserHobby, UserLocation  # noqa: E402
from hobbyhub.models.event import EVENT_OPEN  # noqa: E402
from hobbyhub.services.ws import FanoutPublisher  # noqa: E402


class RecordingRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.published.append((channel, orjson.loads(message)))
        return 1

    def types_for(self, channel: str) -> list[str]:
        return [body["type"] for ch, body in self.published if ch == channel]


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves.
    @sa_event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @sa_event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def redis_fake() -> RecordingRedis:
    return RecordingRedis()


@pytest.fixture
def publisher(redis_fake: RecordingRedis) -> FanoutPublisher:
    return FanoutPublisher(client=redis_fake, timeout_seconds=0.5)


@pytest.fixture
def failing_publisher() -> FanoutPublisher:
    return FanoutPublisher(client=RecordingRedis(fail=True), timeout_seconds=0.1)


@pytest.fixture
def make_user(db: AsyncSession):
    async def _make(
        display_name: str,
        *,
        age: int | None = None,
        gender: str | None = None,
        hobbies: tuple[int, ...] = (),
        locations: tuple[int, ...] = (),
    ) -> User:
        user = User(display_name=display_name, age=age, gender=gender)
        db.add(user)
        await db.flush()
        for hobby_id in hobbies:
            db.add(UserHobby(user_id=user.id, hobby_id=hobby_id))
        for location_id in locations:
            db.add(UserLocation(user_id=user.id, location_id=location_id))
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_event(db: AsyncSession):
    async def _make(
        host: User,
        *,
        max_participants: int = 2,
        min_participants: int = 1,
        starts_at: datetime | None = None,
        status: str = EVENT_OPEN,
        **fields,
    ) -> Event:
        event = Event(
            host_user_id=host.id,
            title=fields.pop("title", "Saturday climbing"),
            starts_at=starts_at or datetime.now(timezone.utc) + timedelta(days=3),
            min_participants=min_participants,
            max_participants=max_participants,
            status=status,
            **fields,
        )
        db.add(event)
        await db.commit()
        return event

    return _make


@pytest_asyncio.fixture
async def client(db: AsyncSession, publisher: FanoutPublisher):
    from hobbyhub.db.session import get_db
    from hobbyhub.main import app
    from hobbyhub.services.ws import get_publisher

    async def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

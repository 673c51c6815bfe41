from __future__ import annotations

import logging

from arq.connections import RedisSettings
from arq.cron import cron

from hobbyhub.core.config import settings
from hobbyhub.core.logging import configure_logging
from hobbyhub.db.session import SessionLocal
from hobbyhub.services.events import sync_event_statuses
from hobbyhub.services.swipes import purge_expired_swipes

logger = logging.getLogger(__name__)


async def sync_event_status_job(ctx) -> dict:
    async with SessionLocal() as db:
        return await sync_event_statuses(db)


async def purge_expired_swipes_job(ctx) -> dict:
    async with SessionLocal() as db:
        deleted = await purge_expired_swipes(db)
    if deleted:
        logger.info("Purged %s expired swipes", deleted)
    return {"swipes_deleted": deleted}


async def startup(ctx) -> None:
    configure_logging()


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [sync_event_status_job, purge_expired_swipes_job]
    cron_jobs = [
        cron(sync_event_status_job, minute=set(range(0, 60, 2))),
        cron(purge_expired_swipes_job, minute={5}),
    ]
    on_startup = startup

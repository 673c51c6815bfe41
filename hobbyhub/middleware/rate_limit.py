from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import ORJSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from hobbyhub.core.config import settings
from hobbyhub.db.redis import redis_client

logger = logging.getLogger(__name__)


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int | None = None, client=None):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute or settings.rate_limit_per_minute
        self.client = client if client is not None else redis_client

    @staticmethod
    def _resolve_subject(request: Request) -> str:
        """Key the bucket on the caller's identity, falling back to its address."""
        user_id = (request.headers.get("x-user-id") or "").strip()
        if user_id:
            return f"user:{user_id}"

        auth = (request.headers.get("authorization") or "").strip()
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
            if token:
                return f"jwt:{token}"

        forwarded = (request.headers.get("x-forwarded-for") or "").strip()
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"

        ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable]):
        if not settings.rate_limit_enabled:
            return await call_next(request)
        if request.url.path.startswith("/health") or request.url.path.startswith("/metrics"):
            return await call_next(request)

        subject = self._resolve_subject(request)
        minute_bucket = int(time.time() // 60)
        key = f"rl:{subject}:{minute_bucket}"

        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, 65)
        except (RedisError, OSError):
            # Fail open when Redis is unavailable.
            logger.warning("Rate limiter unavailable, allowing request", exc_info=True)
            return await call_next(request)

        if count > self.limit_per_minute:
            return ORJSONResponse(
                status_code=429,
                content={"success": False, "error": "Rate limit exceeded", "code": "rate_limited"},
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

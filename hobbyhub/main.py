from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException

from hobbyhub.api.v1.router import api_router
from hobbyhub.core.config import settings
from hobbyhub.core.errors import EngineError
from hobbyhub.core.logging import configure_logging
from hobbyhub.middleware.rate_limit import RedisRateLimitMiddleware
from hobbyhub.services.ws import fanout
from hobbyhub.websockets.channels import channels_ws_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await fanout.drain()


app = FastAPI(
    title=settings.app_name,
    default_response_class=ORJSONResponse,
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RedisRateLimitMiddleware)

app.include_router(api_router, prefix=settings.api_prefix)
app.include_router(channels_ws_router, prefix=settings.ws_prefix)

Instrumentator().instrument(app).expose(app)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> ORJSONResponse:
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "code": "http_error"},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = exc.errors()
    first = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return ORJSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": first,
            "code": "validation_failed",
            "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in errors],
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return ORJSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "internal_error"},
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}

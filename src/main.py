"""questline - gamified habit tracker with squads, communities and live chat."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.core.config import settings
from src.core.db_client import close_connection, init_db
from src.core.errors import ErrorKind, QuestlineError, ValidationFailedError
from src.core.logging import configure_logfire, instrument_fastapi, instrument_pydantic_ai
from src.core.rate_limiter import RateLimitExceededError, enforce_api_rate_limit
from src.core.redis_client import redis_client
from src.interface import leaderboard_router, messages_router, realtime, tasks_router, verification_router


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs warning if unavailable but doesn't fail.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    try:
        result = await redis_client.ping()
        if result:
            logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
        else:
            logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})
    except Exception as e:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable", "error": str(e)})


async def validate_startup_configuration() -> None:
    """Validate required credentials and optional service connectivity.

    Fails fast with a clear message when a credential is missing.
    """
    logger.info("startup_validation_begin")

    try:
        settings.require_credential("secret_key", "Token signing")
        settings.require_credential("encryption_key", "AI credential encryption")
        logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})

        await check_redis_connectivity()

        logger.info("startup_validation_complete", extra={"status": "ok"})

    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so validation logs are captured
    configure_logfire()

    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    instrument_pydantic_ai()
    yield

    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="questline",
    description="Gamified habit tracker with squads, communities and live chat",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuestlineError)
async def handle_questline_error(_request: Request, exc: QuestlineError) -> JSONResponse:
    headers = exc.headers if isinstance(exc, RateLimitExceededError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationFailedError("Validation failed")
    details = [
        {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    content = error.to_response().model_dump()
    content["error"]["details"] = details
    return JSONResponse(status_code=error.status_code, content=content)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    message = str(exc) if settings.environment == "development" else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": {"kind": ErrorKind.INTERNAL, "message": message}},
    )


# Register routers
api_router = APIRouter(prefix="/api", dependencies=[Depends(enforce_api_rate_limit)])
api_router.include_router(tasks_router.router)
api_router.include_router(verification_router.router)
api_router.include_router(messages_router.router)
api_router.include_router(leaderboard_router.router)
app.include_router(api_router)
app.include_router(realtime.router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={"status": "healthy", "redis": redis_client.get_health_status()},
        status_code=200,
    )

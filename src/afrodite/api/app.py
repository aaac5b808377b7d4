import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from afrodite.db.engine import get_engine, get_session_factory, init_engine
from afrodite.db.models import Base
from afrodite.errors import AfroditeError
from afrodite.state import AppState, get_state, init_state

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure structured JSON logging (or plain text for dev)."""
    log_format = os.environ.get("AFRODITE_LOG_FORMAT", "json")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    # Remove existing handlers
    for h in root.handlers[:]:
        root.removeHandler(h)
    handler = logging.StreamHandler()
    if log_format == "json":
        import json as _json

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                d = {
                    "timestamp": self.formatTime(record),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
                if record.exc_info:
                    d["exception"] = self.formatException(record.exc_info)
                return _json.dumps(d)

        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


async def _periodic_api_limit_reset(state: AppState):
    """Background task: zero every account's daily API limit counters."""
    from afrodite.config import config

    while True:
        await asyncio.sleep(config.general.api_limit_reset_interval_seconds)
        try:
            await state.api_limits.reset_all()
            logger.info("Daily API limits reset for %d cached accounts", len(state.cache))
        except Exception:
            logger.error("Periodic API limit reset failed", exc_info=True)


# --- Health and readiness endpoints ---
_health_router = APIRouter(tags=["health"])


@_health_router.get("/health")
async def health():
    return {"status": "ok"}


@_health_router.get("/ready")
async def ready():
    from sqlalchemy import text
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception:
        return JSONResponse(status_code=503, content={"status": "unavailable"})


def create_app(database_url: str | None = None) -> FastAPI:
    if database_url is None:
        database_url = os.environ.get("AFRODITE_DATABASE_URL", "sqlite+aiosqlite:///afrodite.db")
    init_engine(database_url)
    init_state(get_session_factory())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()

        # Create tables on startup
        engine = get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        # Load runtime-configurable settings from DB
        from afrodite.config import load_config
        async with get_session_factory()() as db:
            await load_config(db)

        logger.warning(
            "Afrodite keeps its cache, iterator sessions and API limit counters in memory. "
            "Run with a single worker process only."
        )

        reset_task = asyncio.create_task(_periodic_api_limit_reset(get_state()))
        yield
        reset_task.cancel()
        try:
            await reset_task
        except asyncio.CancelledError:
            pass
        # Dispose engine on shutdown
        await engine.dispose()

    from afrodite.models.errors import ErrorEnvelope

    app = FastAPI(
        title="Afrodite",
        version="0.1.0",
        description="Afrodite account state synchronization API",
        lifespan=lifespan,
        responses={
            401: {"model": ErrorEnvelope},
            404: {"model": ErrorEnvelope},
            422: {"model": ErrorEnvelope},
            429: {"model": ErrorEnvelope},
            503: {"model": ErrorEnvelope},
        },
    )

    @app.exception_handler(AfroditeError)
    async def afrodite_exception_handler(request, exc: AfroditeError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        return JSONResponse(
            status_code=422,
            content={"error": {"code": "VALIDATION_ERROR", "message": str(exc)}},
        )

    # Register routers
    from afrodite.api.accounts import router as accounts_router
    from afrodite.api.admin import router as admin_router
    from afrodite.api.likes import router as likes_router
    from afrodite.api.news import router as news_router
    from afrodite.api.resources import router as resources_router

    app.include_router(_health_router)
    app.include_router(accounts_router)
    app.include_router(resources_router)
    app.include_router(likes_router)
    app.include_router(news_router)
    app.include_router(admin_router)

    return app

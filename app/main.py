import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from app.api.v1.router import api_v1_router
from app.core.config import settings, validate_settings_for_production
from app.core.logging import setup_logging
from app.core.metrics import PrometheusMiddleware, metrics_response
from app.core.middleware import RequestLoggingMiddleware
from app.core.rate_limit import limiter
from app.core.sentry import init_sentry
from app.db.postgres import async_session_factory, engine
from app.services.prompt_runner import BatchWorker, PromptRunner
from app.services.run_status import run_registry

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


def _build_runner() -> PromptRunner:
    return PromptRunner.from_settings(settings, session_factory=async_session_factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting AI visibility pipeline (env=%s)", settings.app_env)

    worker = BatchWorker(_build_runner, run_registry)
    worker.start()
    app.state.batch_worker = worker

    yield

    # Shutdown
    await worker.stop()
    await engine.dispose()
    logger.info("AI visibility pipeline shut down")


app = FastAPI(
    title="AI Visibility Pipeline",
    description="Runs tracked prompts against AI providers and reports brand visibility",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


# Log unhandled exceptions with a full traceback
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Metrics + request logging middleware
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        db_ok = False

    worker = getattr(request.app.state, "batch_worker", None)
    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "batch_worker": bool(worker and worker.running),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()

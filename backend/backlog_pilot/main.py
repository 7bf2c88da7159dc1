"""Backlog Pilot — FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backlog_pilot.config import settings
from backlog_pilot.api import health, games, suggest

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: create tables, probe integrations, start the rate-limit sweeper
    from backlog_pilot.database import engine, init_db
    from backlog_pilot.services.integration_probe import probe_all
    from backlog_pilot.api.deps import get_rate_limiter

    await init_db()
    app.state.integrations = await probe_all(settings)
    logger.info(f"Integrations: {app.state.integrations}")

    sweeper = asyncio.create_task(get_rate_limiter().run_sweeper(settings.rate_limit_sweep_seconds))
    yield
    # Shutdown: stop sweeper, close DB pool
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Mood-based suggestions from your Steam backlog",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# CORS: frontend dev server + production URL
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",     # Vite dev server
        settings.app_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"],
)

# ── Mount routers ────────────────────────────────────────────────
app.include_router(health.router,   prefix="/api/v1", tags=["system"])
app.include_router(games.router,    prefix="/api/v1", tags=["games"])
app.include_router(suggest.router,  prefix="/api/v1", tags=["suggest"])

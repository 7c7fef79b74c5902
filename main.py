# main.py
# Role: Application entry point for the Kwacha Tracker backend.
#       Builds the FastAPI app around an explicit Settings object: database
#       engine, AI and push services, middleware, routers and the daily
#       analysis scheduler.

"""
Main FastAPI app for the Kwacha Tracker backend.

Here we only:
- build the database handle and optional AI / push services
- create DB tables and start the scheduler on startup
- install CORS and rate-limit middleware
- include route modules

Run with: uvicorn main:app
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings
from db import Base, make_engine, make_session_factory
from app.security import RateLimiter
from app.services.insights import InsightGenerator
from app.services.push import PushDispatcher
from app.services.scheduler import INTER_USER_DELAY_SECONDS, DailyScheduler, run_daily_analysis
from app.routes_root import router as root_router
from app.routes_auth import router as auth_router
from app.routes_transactions import router as transactions_router
from app.routes_dashboard import router as analytics_router
from app.routes_insights import router as insights_router
from app.routes_admin import router as admin_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Lifespan: tables + scheduler
# -------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables (only if they don't exist yet).
    Base.metadata.create_all(bind=app.state.engine)
    logger.info("Database tables ready")

    settings: Settings = app.state.settings
    scheduler: Optional[DailyScheduler] = None
    if settings.scheduler_enabled and app.state.insight_generator is not None:
        tz = ZoneInfo(settings.scheduler_timezone) if settings.scheduler_timezone else None
        scheduler = DailyScheduler(app.state.daily_job, hour=settings.scheduler_hour, tz=tz)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        logger.info("Stopping daily analysis scheduler...")
        scheduler.stop()
    app.state.engine.dispose()


# -------------------------------------------------------------------
# App factory
# -------------------------------------------------------------------

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Kwacha Tracker API", version="1.1.0", lifespan=lifespan)

    engine = make_engine(settings.database_url)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    # Optional integrations: the API keeps working without them
    app.state.insight_generator = InsightGenerator.from_settings(settings)
    if app.state.insight_generator is None:
        logger.warning("GEMINI_API_KEY not set, AI insights disabled")
    app.state.push_dispatcher = PushDispatcher.from_settings(settings)
    app.state.sweep_delay = INTER_USER_DELAY_SECONDS
    app.state.scheduler = None

    def daily_job(stop_event=None):
        # Reads app.state at call time so swapped services are picked up
        return run_daily_analysis(
            app.state.session_factory,
            app.state.insight_generator,
            app.state.push_dispatcher,
            delay=app.state.sweep_delay,
            stop_event=stop_event,
        )

    app.state.daily_job = daily_job

    # ---------------------------------------------------------------
    # Middleware
    # ---------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Admin-Key"],
    )

    limiter = RateLimiter(settings.rate_limit_per_minute, window=60.0)
    app.state.rate_limiter = limiter

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        if not limiter.allow(client):
            logger.warning("Rate limit exceeded for %s", client)
            return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})
        return await call_next(request)

    # ---------------------------------------------------------------
    # Routers
    # ---------------------------------------------------------------

    # Health
    app.include_router(root_router)

    # Device registration, consent, data deletion
    app.include_router(auth_router)

    # Transaction sync + listing
    app.include_router(transactions_router)

    # Summary and trends
    app.include_router(analytics_router)

    # AI insights + direct push
    app.include_router(insights_router)

    # Operator API
    app.include_router(admin_router)

    return app


app = create_app()

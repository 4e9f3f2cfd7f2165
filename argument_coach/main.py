import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from argument_coach import database
from argument_coach.agents.coach.agent import CoachProvider, GeminiCoachProvider
from argument_coach.api.coach import router as coach_router
from argument_coach.api.sessions import router as sessions_router
from argument_coach.counters import CounterStore, InMemoryCounterStore, SqlCounterStore
from argument_coach.errors import CoachError
from argument_coach.logging_config import setup_logging
from argument_coach.quota import QuotaLedger, RateLimiter
from argument_coach.settings import settings
from argument_coach.turns import CoachTurn

logger = logging.getLogger(__name__)


def build_counter_store() -> CounterStore:
    if settings.COUNTER_BACKEND == "memory":
        return InMemoryCounterStore()
    return SqlCounterStore()


def create_app(
    provider: Optional[CoachProvider] = None,
    counter_store: Optional[CounterStore] = None,
    init_database: bool = True,
) -> FastAPI:
    """
    Build the application.

    Tests pass a scripted provider, an in-memory counter store and
    `init_database=False` after pointing the engine at a temporary database.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - runs on startup/shutdown."""
        setup_logging(settings.LOG_LEVEL)
        settings.validate(require_api_key=provider is None)

        if init_database:
            if settings.DATABASE_URL:
                logger.info("Initializing database...")
                database.init_engine()
                await database.create_tables()
                logger.info("Database tables ready")
            else:
                logger.warning("DATABASE_URL not set - skipping database initialization")

        store = counter_store or build_counter_store()
        ledger = QuotaLedger(
            store,
            monthly_limit=settings.COACH_MONTHLY_QUOTA,
            unlimited_roles=settings.COACH_UNLIMITED_ROLES,
        )
        window = settings.COACH_RATE_LIMIT_WINDOW_SECONDS
        app.state.quota_ledger = ledger
        app.state.rate_limiters = {
            "coach": RateLimiter(store, max_requests=settings.COACH_RATE_LIMIT_MAX_REQUESTS, window_seconds=window),
            "session_create": RateLimiter(
                store, max_requests=settings.SESSION_CREATE_RATE_LIMIT, window_seconds=window, scope="session_create"
            ),
            "finalize": RateLimiter(
                store, max_requests=settings.FINALIZE_RATE_LIMIT, window_seconds=window, scope="finalize"
            ),
        }
        app.state.coach_turn = CoachTurn(
            ledger, app.state.rate_limiters["coach"], provider or GeminiCoachProvider()
        )

        yield

        if init_database:
            await database.dispose_engine()
        logger.info("Shutting down...")

    app = FastAPI(title="Argument Coach", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Coach-Quota-Limit",
            "X-Coach-Quota-Remaining",
            "X-Coach-Quota-Used",
            "X-Coach-Quota-Reset",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    @app.exception_handler(CoachError)
    async def coach_error_handler(request: Request, exc: CoachError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)

    app.include_router(coach_router)
    app.include_router(sessions_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "database": database.engine is not None}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

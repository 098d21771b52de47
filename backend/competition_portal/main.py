import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from competition_portal.core.config import settings
from competition_portal.core.database import engine, Base
from competition_portal.core.errors import register_exception_handlers
from competition_portal.core.scheduler import start_scheduler, stop_scheduler
from competition_portal.api.routes import admin, auth, competitions, leaderboard, submissions, users
import competition_portal.models  # noqa: F401  registers every table on Base.metadata

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage app lifecycle events.

    Startup: create missing tables, start the token cleanup scheduler (production only)
    Shutdown: stop the scheduler
    """
    # In production, use migrations (Alembic) instead of create_all
    Base.metadata.create_all(bind=engine)
    if settings.is_production:
        start_scheduler()
    else:
        logger.info(f"Token cleanup scheduler disabled in {settings.ENVIRONMENT} environment")
    yield
    stop_scheduler()


app = FastAPI(
    title="Competition Portal API",
    description="Registration, submissions, judging and leaderboard for weekly competitions",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# All routes are prefixed with /api
app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(submissions.router, prefix="/api")
app.include_router(competitions.router, prefix="/api")
app.include_router(leaderboard.router, prefix="/api")
app.include_router(admin.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {"message": "Competition Portal API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint - used by monitoring/deployment tools"""
    return {"status": "healthy"}

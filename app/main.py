"""
CareerBoost - Main Application

FastAPI backend with:
- PostgreSQL for all data (raw SQL through SQLAlchemy)
- Candidate / offer matching and skills parsing
- France Travail offer aggregation (background asyncio task)
- JWT authentication

Run: uvicorn app.main:app --reload
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.api import api_router
from app.core.config import get_settings
from app.core.errors import register_exception_handlers
from app.core.logging_config import setup_logging
from app.db.migrations import run_migrations
from app.db.postgres import test_postgres_connection
from app.services.offer_aggregation_service import get_offer_aggregation_service
from app.services.skills_service import seed_skills

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="CareerBoost",
    description="""
    Recruiting marketplace API.

    ## Features
    - **Authentication**: invitation-based activation, JWT bearer tokens
    - **Candidates**: profile, skills, saved offers, applications
    - **Recruiters**: company validation, offers, applicants, CSV export
    - **Matching**: 0-100 score with a readable explanation
    - **Admin**: company and offer moderation, skills referential, reports
    - **France Travail**: periodic import of external offers
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    """Apply migrations (when enabled), seed the skills referential, then start the France Travail sync."""
    if settings.run_migrations_on_startup:
        applied = run_migrations()
        logger.info("Migrations applied at startup: %d", len(applied))

    try:
        seed_skills()
    except SQLAlchemyError as e:
        logger.warning("Skills referential seeding failed: %s", e)

    get_offer_aggregation_service().start_auto_sync()


@app.on_event("shutdown")
async def shutdown_event():
    await get_offer_aggregation_service().stop_auto_sync()


@app.get("/", tags=["Health"])
async def root():
    return {"status": "healthy", "app": "CareerBoost", "docs": "/docs"}


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    postgres_ok = test_postgres_connection()
    return {
        "status": "healthy" if postgres_ok else "degraded",
        "postgres": "connected" if postgres_ok else "disconnected",
        "france_travail_sync": get_offer_aggregation_service().get_status()
    }

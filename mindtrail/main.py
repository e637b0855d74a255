"""FastAPI application entry point for Mindtrail.

This module initializes the FastAPI app, configures logging and middleware,
and registers the visualization and session routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mindtrail.config import DATABASE_PATH, LLM_MODEL, LLM_PROVIDER, TUTOR_LANGUAGE, validate_api_keys
from mindtrail.database import init_database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("mindtrail")


# ============================================================================
# Lifespan Event Handler
# ============================================================================

@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("🚀 Starting Mindtrail...")

    # Validate API keys
    try:
        validate_api_keys()
        logger.info("✓ Using LLM provider: %s (model: %s)", LLM_PROVIDER, LLM_MODEL)
    except ValueError as e:
        logger.warning("⚠️  %s", e)
        logger.warning("   Set the appropriate API key environment variable before using the app.")

    # Initialize database
    init_database(DATABASE_PATH)
    logger.info("✓ Database initialized: %s", DATABASE_PATH)
    logger.info("✓ Tutor language: %s", TUTOR_LANGUAGE)
    logger.info("   Note: Run 'python -m mindtrail.load_plan plan.json' to check a task plan")

    yield

    # Shutdown
    session.close_all_sessions()
    logger.info("👋 Shutting down Mindtrail...")


# ============================================================================
# FastAPI Application Setup
# ============================================================================

app = FastAPI(
    title="Mindtrail",
    description="Guided visualization and task progression engine for AI-tutored learning",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware (allow all origins for local demo)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoint
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint - returns API status."""
    return {
        "status": "healthy",
        "app": "Mindtrail",
        "version": "0.1.0",
        "llm_provider": LLM_PROVIDER,
        "llm_model": LLM_MODEL,
    }


# ============================================================================
# Route Registration (imported after app creation to avoid circular imports)
# ============================================================================

from mindtrail.routes import session, visualization  # noqa: E402

app.include_router(visualization.router)
app.include_router(session.router)

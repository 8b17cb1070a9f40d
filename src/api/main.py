"""FastAPI application entry point."""

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables before importing runtime config/services.
load_dotenv()

from .config import settings
from .logging_config import setup_logging

setup_logging(settings.log_level)

import logging

from .routers import conversations

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Study Circle API",
    description="Turn-taking orchestration for multi-party tutoring conversations",
    version="1.0.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(conversations.router)

logger.info("=" * 80)
logger.info("FastAPI Application Started")
logger.info("CORS Origins: %s", settings.cors_origins)
logger.info("Summaries Path: %s", settings.summaries_path)
logger.info("=" * 80)


@app.on_event("startup")
async def startup_event():
    """Initialize persona configuration on startup."""
    logger.info("=== Application startup initialization ===")
    service = conversations.get_conversation_service()
    personas = await service.persona_service.get_personas()
    logger.info("Loaded %s persona(s): %s", len(personas), [p.id for p in personas])


@app.on_event("shutdown")
async def shutdown_event():
    """Stop timers and running generations of every live conversation."""
    await conversations.get_conversation_service().shutdown()


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Study Circle API",
        "docs": "/docs",
        "health": "/api/health",
    }

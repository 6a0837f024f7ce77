"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipora.config import settings
from clipora.db.database import init_db, close_db
from clipora.api.routes import router, pubsub_router
from clipora.services.gemini import GenerativeModelClient
from clipora.services.storage import ObjectStorage
from clipora.workers.job_runner import job_runner
from clipora.workers.handlers import PROCESS_VIDEO, handle_process_video

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Clipora...")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Shared external clients, built lazily on first use
    app.state.model_client = GenerativeModelClient()
    app.state.storage = ObjectStorage()

    # Register job handlers
    job_runner.register_handler(PROCESS_VIDEO, handle_process_video)
    logger.info("Job handlers registered")

    yield

    # Shutdown
    logger.info("Shutting down Clipora...")
    await job_runner.shutdown()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="AI video clipping and sound design backend",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")
app.include_router(pubsub_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clipora.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )

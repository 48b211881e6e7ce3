import signal
import sys
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from runner_fleet import __version__
from runner_fleet.api.routes import router
from runner_fleet.compiler import RunnerFleetCompiler
from runner_fleet.config import get_settings
from runner_fleet.utils.logging import setup_logging


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """FastAPI lifespan context manager."""
    settings = get_settings()

    # Setup logging
    setup_logging(settings)
    logger = structlog.get_logger()

    try:
        logger.info(
            "Starting runner fleet compiler",
            version=__version__,
            stack=settings.stack_name,
            region=settings.region,
        )

        # Store compiler in app state for access in routes
        fastapi_app.state.compiler = RunnerFleetCompiler(settings)

        logger.info("Compiler ready")
        yield

    except Exception as e:
        logger.error("Failed to start compiler", error=str(e))
        raise
    finally:
        fastapi_app.state.compiler = None
        logger.info("Compiler stopped")


# Create FastAPI app
app = FastAPI(
    title="GitLab Runner Fleet Compiler",
    description="Resolves runner group declarations into manager bootstrap artifacts",
    version=__version__,
    lifespan=lifespan,
)

# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "compiler_ready": getattr(app.state, "compiler", None) is not None,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "GitLab Runner Fleet Compiler",
        "version": __version__,
        "docs_url": "/docs",
    }


def signal_handler(signum, _):
    """Handle shutdown signals gracefully."""
    logger = structlog.get_logger()
    logger.info("Received shutdown signal", signal=signum)
    sys.exit(0)


if __name__ == "__main__":
    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    settings = get_settings()

    # Run the application
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        access_log=True,
        reload=False,
    )

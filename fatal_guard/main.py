"""
FastAPI application entry point.
"""

from fastapi import FastAPI

from fatal_guard import __version__
from fatal_guard.config import settings
from fatal_guard.middleware.error_handler import install_exception_handlers
from fatal_guard.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Fatal Guard",
    description="Fatal error interception with a flat file error log",
    version=__version__
)

# Unhandled exceptions go to the fatal log and return the generic failure body
install_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "version": __version__}


@app.on_event("startup")
async def startup_event():
    """Log where fatal records will be written."""
    logger.info(f"Starting Fatal Guard, fatal log at {settings.log_root}/{settings.log_file_name}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""Fulfillment Metrics - Main Entry Point."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file before settings are read
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

from fulfillment_metrics.config.settings import settings  # noqa: E402
from fulfillment_metrics.server.app import create_app  # noqa: E402

# Create FastAPI application
app = create_app()

if __name__ == "__main__":
    import uvicorn

    reload = os.getenv("RELOAD", "false").lower() == "true"

    uvicorn.run(
        "fulfillment_metrics.main:app",
        host=settings.host,
        port=settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=30,
        access_log=False,  # Structured logging only
    )

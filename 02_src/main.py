"""Serve the fetchcore inspection API."""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from fetchcore.api import create_fastapi_app
from fetchcore.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def main():
    """Load .env, configure logging and run the API server."""
    project_root = Path(__file__).resolve().parent.parent
    # proxy credentials ({PREFIX}_CRAWLBASE etc.) usually come from here
    load_dotenv(project_root / ".env")
    setup_logging()

    host = os.getenv("API_HOST", "localhost")
    port = int(os.getenv("API_PORT", "8000"))
    logger.info("Serving fetchcore inspection API on %s:%d", host, port)

    uvicorn.run(create_fastapi_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()

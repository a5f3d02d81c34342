"""
Hardware Sentry entry point.
Serves the scan API with uvicorn.
"""

import uvicorn
from loguru import logger

from hwsentry.api import create_app
from hwsentry.settings import global_settings


def main() -> None:
    """Start the API server."""
    logger.info("Starting Hardware Sentry...")
    app = create_app(settings=global_settings)
    uvicorn.run(app, host=global_settings.api_host, port=global_settings.api_port)
    logger.info("Hardware Sentry stopped")


if __name__ == "__main__":
    main()

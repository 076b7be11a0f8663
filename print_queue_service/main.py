"""
Main entry point for the Print Queue Service.
This module starts the FastAPI application using uvicorn.
"""
import logging
import sys
import uvicorn

from .config_manager import ConfigManager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - [%(name)s] - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("print_queue_service.log")
    ]
)

logger = logging.getLogger(__name__)


def main():
    """Start the Print Queue Service."""
    logger.info("Starting Print Queue Service...")
    config = ConfigManager()

    try:
        uvicorn.run(
            "print_queue_service.api.main:app",
            host=config.api.host,
            port=config.api.port,
            reload=False,  # Disable reload in production
            log_level="info"
        )
    except Exception as e:
        logger.error(f"Failed to start service: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

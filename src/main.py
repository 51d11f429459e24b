"""Main entry point for the LearnStream rewards API"""
import logging
import asyncio
import uvicorn
from src.config import validate_config, API_HOST, API_PORT, LOG_LEVEL
from src.api.server import create_api_application

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


async def main() -> None:
    """Main application entry point"""
    # Validate configuration
    logger.info("Validating configuration...")
    validate_config()

    app = create_api_application()
    server = uvicorn.Server(
        uvicorn.Config(app, host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())
    )

    logger.info(f"Rewards API listening on {API_HOST}:{API_PORT}")
    try:
        await server.serve()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        logger.info("Shutdown complete")


def run() -> None:
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()

import logging
import os
import sys
import traceback

import uvicorn

# Configure logging to stdout until the app installs its own handler
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

# Add the src directory to Python path
current_dir = os.path.dirname(os.path.abspath(__file__))
src_path = os.path.join(current_dir, 'src')
sys.path.insert(0, src_path)


def _log_environment() -> None:
    """Log which integrations are configured without exposing secrets."""
    def flag(name: str) -> str:
        return "set" if os.environ.get(name) else "not set"

    logger.info("visitflow startup")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"  PORT: {os.environ.get('PORT', '8000')}")
    logger.info(f"  APP_ENV: {os.environ.get('APP_ENV', 'not set')}")
    logger.info(f"  MONGO_URI: {flag('MONGO_URI')}")
    logger.info(f"  MONGO_DB_NAME: {os.environ.get('MONGO_DB_NAME', 'not set')}")
    logger.info(f"  ASSEMBLYAI_API_KEY: {flag('ASSEMBLYAI_API_KEY')}")
    logger.info(f"  WEBHOOK_SECRET: {flag('WEBHOOK_SECRET')}")
    logger.info(f"  AZURE_OPENAI_ENDPOINT: {flag('AZURE_OPENAI_ENDPOINT')}")
    logger.info(f"  OPENAI_API_KEY: {flag('OPENAI_API_KEY')}")


if __name__ == "__main__":
    _log_environment()
    try:
        from visitflow.core.config import get_settings

        try:
            settings = get_settings()
        except ValueError as ve:
            logger.error(f"Configuration validation failed: {ve}")
            logger.error("Check MONGO_URI and the PROCESSING_/POST_COMMIT_ settings")
            sys.exit(1)

        port = int(os.environ.get("PORT", settings.port))
        host = os.environ.get("HOST", settings.host)
        logger.info(f"Starting {settings.app_name} v{settings.app_version} on {host}:{port}")

        uvicorn.run(
            "visitflow.app:app",
            host=host,
            port=port,
            workers=1,
            log_level="info",
            access_log=True,
            reload=settings.is_development and settings.debug,
            timeout_keep_alive=75,
            timeout_graceful_shutdown=30,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down due to keyboard interrupt")
        sys.exit(0)
    except Exception as e:
        logger.error(f"CRITICAL: Failed to start application: {type(e).__name__}: {e}")
        logger.error(traceback.format_exc())
        sys.exit(1)

import asyncio
import logging
import signal

from visitflow.adapters.db.mongo.connection import init_database
from visitflow.core.config import get_settings
from visitflow.core.structured_logger import configure_logging
from visitflow.workers.recovery_sweeper import run_recovery_sweeper_forever

logger = logging.getLogger("visitflow")


async def main() -> None:
    """
    Entry point for the visit recovery sweeper.

    This process is intended to be run separately from the API workers:
        PYTHONPATH=./src python3 sweeper_startup.py
    """
    settings = get_settings()
    configure_logging(settings.logging)
    if not settings.sweeper.enabled:
        logger.info(
            "Recovery sweeper is disabled. Set RECOVERY_SWEEPER_ENABLED=true to enable."
        )
        return

    logger.info(
        "Sweeper config: interval=%ss, batch_limit=%s, post_commit_limit=%s",
        settings.sweeper.interval_seconds,
        settings.sweeper.batch_limit,
        settings.post_commit.recovery_limit,
    )

    client = await init_database(settings.database)

    # Graceful shutdown via signals
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received for sweeper, stopping gracefully")
        stop_event.set()

    loop = asyncio.get_running_loop()
    if hasattr(signal, "SIGTERM"):
        loop.add_signal_handler(signal.SIGTERM, _signal_handler)
    if hasattr(signal, "SIGINT"):
        loop.add_signal_handler(signal.SIGINT, _signal_handler)

    try:
        sweeper_task = asyncio.create_task(run_recovery_sweeper_forever())
        await stop_event.wait()
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            logger.info("Sweeper task cancelled.")
    finally:
        client.close()
        logger.info("Sweeper MongoDB client closed.")


if __name__ == "__main__":
    asyncio.run(main())

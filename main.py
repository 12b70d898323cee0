"""
seatsync entry point
Runs the resilient data-access layer with its maintenance jobs and
reports health periodically.
"""

import asyncio
import sys

from loguru import logger

from seatsync.datastore.engine import close_db, get_session_factory, init_db
from seatsync.offline.storage import SqlStorage
from seatsync.services.client import create_client
from seatsync.services.jobs import MaintenanceScheduler
from seatsync.settings import global_settings

HEALTH_LOG_INTERVAL = 300


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if global_settings.debug else global_settings.log_level)


async def main() -> None:
    """Main function"""
    configure_logging()
    logger.info("Starting seatsync...")

    client = None
    jobs = None
    try:
        logger.info("Initializing database...")
        await init_db()

        client = create_client(global_settings, storage=SqlStorage(get_session_factory()))
        restored = await client.start()
        logger.info(f"Client ready ({restored} offline operations restored)")

        jobs = MaintenanceScheduler(client)
        jobs.start()

        logger.info("seatsync is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(HEALTH_LOG_INTERVAL)
            logger.info(f"Health: {client.get_health_status()}")

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        if jobs is not None and jobs.is_running():
            jobs.stop()

        if client is not None:
            await client.close()

        logger.info("Closing database connections...")
        await close_db()

        logger.info("seatsync stopped")


if __name__ == "__main__":
    asyncio.run(main())

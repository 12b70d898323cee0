"""
Maintenance jobs for a running client.
Uses APScheduler to run cache sweeps, connectivity probes and
secondary-transport housekeeping at fixed intervals.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from seatsync.services.client import ResilientClient
from seatsync.utils import safe_func_wrapper

HOUSEKEEPING_INTERVAL = 60.0


class MaintenanceScheduler:
    """Periodic background work of a ResilientClient"""

    def __init__(self, client: ResilientClient, scheduler: AsyncIOScheduler | None = None):
        self.client = client
        self.scheduler = scheduler or AsyncIOScheduler()
        self._is_running = False

    @safe_func_wrapper
    async def sweep_cache_job(self) -> None:
        """Drop expired cache entries"""
        removed = self.client.cache.cleanup_expired()
        if removed:
            logger.debug(f"Cache sweep removed {removed} expired entries")

    @safe_func_wrapper
    async def probe_connection_job(self) -> None:
        """Probe connectivity; recovery drains the offline queue"""
        try:
            await self.client.monitor.check_connection()
        except Exception as e:
            logger.error(f"Error in scheduled connectivity probe: {e}")

    @safe_func_wrapper
    async def housekeeping_job(self) -> None:
        """Secondary transport upkeep, then another pass over queued writes"""
        stats = self.client.maintenance()
        if stats["tombstones_purged"]:
            logger.debug(f"Purged {stats['tombstones_purged']} callback tombstones")

        if len(self.client.queue) and not self.client.queue.is_replaying:
            report = await self.client.monitor.drain()
            if report.succeeded:
                logger.info(f"Housekeeping replayed {len(report.succeeded)} queued operations")

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        settings = self.client.settings

        self.scheduler.add_job(
            self.sweep_cache_job,
            trigger="interval",
            seconds=self.client.cache.sweep_interval,
            id="cache_sweep",
            name="Cache Sweep",
            replace_existing=True,
        )

        if self.client.monitor.has_probe:
            self.scheduler.add_job(
                self.probe_connection_job,
                trigger="interval",
                seconds=settings.probe_interval,
                id="connection_probe",
                name="Connectivity Probe",
                replace_existing=True,
            )
            logger.info(f"Connectivity probe: every {settings.probe_interval}s")

        self.scheduler.add_job(
            self.housekeeping_job,
            trigger="interval",
            seconds=HOUSEKEEPING_INTERVAL,
            id="transport_housekeeping",
            name="Transport Housekeeping",
            replace_existing=True,
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Maintenance scheduler started: cache sweep every "
            f"{self.client.cache.sweep_interval}s"
        )

    def stop(self) -> None:
        """Stop the scheduler"""
        if not self._is_running:
            logger.warning("Maintenance scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    def is_running(self) -> bool:
        """Check whether the scheduler is running"""
        return self._is_running

    def get_jobs(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]

"""
ConnectionMonitor - ONLINE/OFFLINE state machine.

Driven by connectivity events (handle_online / handle_offline) and a
periodic probe. Going online drains the offline queue; going offline
starts bounded reconnection attempts with exponential backoff.
"""

import asyncio
from enum import Enum
from typing import Any

from loguru import logger

from seatsync.offline.queue import OfflineQueue, ReplayExecutor, ReplayReport
from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import is_service_exception
from seatsync.services.notices import (
    LoggingNoticeSink,
    Notice,
    NoticeKind,
    NoticeLevel,
    NoticeSink,
)
from seatsync.transport.probe import Probe


class ConnectivityState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectionMonitor:
    """
    Tracks connectivity and flushes the offline queue on recovery.

    Usage:
        monitor = ConnectionMonitor(queue, replay_executor, probe=http_probe(url))
        await monitor.handle_offline()
        ...
        await monitor.check_connection()  # drains the queue once reachable
    """

    def __init__(
        self,
        queue: OfflineQueue,
        replay_executor: ReplayExecutor,
        probe: Probe | None = None,
        clock: Clock | None = None,
        notices: NoticeSink | None = None,
        max_reconnect_attempts: int = 10,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        initially_online: bool = True,
    ):
        self.queue = queue
        self._replay_executor = replay_executor
        self._probe = probe
        self._clock = clock or SystemClock()
        self._notices = notices or LoggingNoticeSink()
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay

        self._state = ConnectivityState.ONLINE if initially_online else ConnectivityState.OFFLINE
        self._reconnect_attempts = 0
        self._recovering = False
        self._reconnect_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ConnectivityState.ONLINE

    @property
    def has_probe(self) -> bool:
        return self._probe is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    async def handle_online(self) -> ReplayReport:
        """Mark the connection as restored and replay queued writes."""
        if not self.is_online:
            self._state = ConnectivityState.ONLINE
            self._reconnect_attempts = 0
            logger.info("[ConnectionMonitor] Connection restored")
            self._notices.notify(
                Notice(
                    kind=NoticeKind.CONNECTION_RESTORED,
                    level=NoticeLevel.SUCCESS,
                    title="Connection restored",
                    message="Internet connection is back",
                    duration=3.0,
                )
            )
        return await self.drain()

    async def handle_offline(self, reconnect: bool = True) -> None:
        """Mark the connection as lost and optionally start reconnecting."""
        if self.is_online:
            self._state = ConnectivityState.OFFLINE
            logger.warning("[ConnectionMonitor] Connection lost")
            self._notices.notify(
                Notice(
                    kind=NoticeKind.CONNECTION_LOST,
                    level=NoticeLevel.WARNING,
                    title="Offline",
                    message="Connection lost. Reconnecting automatically.",
                    duration=5.0,
                )
            )

        if reconnect and not self._recovering:
            self._start_reconnection()

    def _start_reconnection(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self.attempt_reconnection())

    async def check_connection(self) -> bool:
        """
        Probe the network once and move the state machine accordingly.

        Without a probe the current state is reported unchanged.
        """
        if self._probe is None:
            return self.is_online

        try:
            reachable = await self._probe()
        except Exception as e:
            if not is_service_exception(e):
                raise
            logger.debug(f"[ConnectionMonitor] Probe failed: {e}")
            reachable = False

        if reachable and not self.is_online:
            await self.handle_online()
        elif not reachable and self.is_online:
            await self.handle_offline(reconnect=not self._recovering)
        return reachable

    async def attempt_reconnection(self) -> bool:
        """
        Probe with exponential backoff until online or attempts run out.

        Returns:
            True once the connection is back
        """
        if self._recovering:
            return False

        self._recovering = True
        try:
            while (
                self._reconnect_attempts < self._max_reconnect_attempts
                and not self.is_online
            ):
                self._reconnect_attempts += 1
                logger.info(
                    f"[ConnectionMonitor] Reconnect attempt "
                    f"{self._reconnect_attempts}/{self._max_reconnect_attempts}"
                )

                if await self.check_connection():
                    return True
                if self._reconnect_attempts >= self._max_reconnect_attempts:
                    break

                delay = min(
                    self._reconnect_base_delay * (2 ** (self._reconnect_attempts - 1)),
                    self._reconnect_max_delay,
                )
                await self._clock.sleep(delay)
        finally:
            self._recovering = False

        if self.is_online:
            return True

        if self._reconnect_attempts >= self._max_reconnect_attempts:
            logger.error("[ConnectionMonitor] Maximum reconnect attempts reached")
            self._notices.notify(
                Notice(
                    kind=NoticeKind.RECONNECT_FAILED,
                    level=NoticeLevel.ERROR,
                    title="Connection failed",
                    message="Could not restore the connection. Check the network settings.",
                    blocking=True,
                    duration=None,
                )
            )
        return False

    async def drain(self) -> ReplayReport:
        """Replay the offline queue while online."""
        if not self.is_online or len(self.queue) == 0:
            return ReplayReport()

        report = await self.queue.replay(
            self._replay_executor, is_online=lambda: self.is_online
        )
        if report.interrupted and self.is_online:
            if self._probe is None:
                # Nothing could bring the state back online; retry the drain later
                logger.warning(
                    f"[ConnectionMonitor] Replay interrupted, "
                    f"{len(self.queue)} operations stay queued"
                )
            else:
                await self.check_connection()
        return report

    async def close(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)
        self._reconnect_task = None

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "online": self.is_online,
            "reconnect_attempts": self._reconnect_attempts,
            "max_reconnect_attempts": self._max_reconnect_attempts,
            "recovering": self._recovering,
            "pending_operations": len(self.queue),
        }

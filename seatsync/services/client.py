"""
ResilientClient - the data-access layer with every resilience pattern wired in.

Combines:
- RequestScheduler for caching, de-duplication and bounded concurrency
- FallbackOrchestrator for retry, circuit breaking and primary/secondary fallback
- OfflineQueue + ConnectionMonitor for writes made while disconnected
"""

import asyncio
from datetime import timedelta
from typing import Any

import httpx
from loguru import logger

from seatsync.offline.monitor import ConnectionMonitor
from seatsync.offline.queue import OfflineQueue
from seatsync.offline.storage import MemoryStorage, QueueStorage
from seatsync.operations.registry import OperationRegistry
from seatsync.operations.seats import default_registry
from seatsync.services.cache import RequestCache
from seatsync.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import CONNECTIVITY_ERROR_TYPES
from seatsync.services.fallback import FallbackOrchestrator, SecondaryBudget
from seatsync.services.notices import LoggingNoticeSink, NoticeSink, notice_for_result
from seatsync.services.results import ApiResult
from seatsync.services.retry import RetryPolicy
from seatsync.services.scheduler import RequestScheduler
from seatsync.settings import Settings, global_settings
from seatsync.transport.base import Transport
from seatsync.transport.primary import HttpPrimaryTransport
from seatsync.transport.probe import Probe, http_probe
from seatsync.transport.secondary import CallbackTransport


class ResilientClient:
    """
    Single entry point for backend operations.

    Usage:
        async with create_client() as client:
            await client.start()
            result = await client.call("getSeatData", ["G1", "1", "A", False, False])
            if result.offline:
                ...  # captured for replay, or no data while offline
    """

    def __init__(
        self,
        primary: Transport,
        secondary: Transport | None = None,
        registry: OperationRegistry | None = None,
        storage: QueueStorage | None = None,
        probe: Probe | None = None,
        notices: NoticeSink | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or global_settings
        self.settings = settings
        self._clock = clock or SystemClock()
        self._notices = notices or LoggingNoticeSink()
        self.registry = registry or default_registry()
        self._defer_on_network_failure = settings.defer_writes_on_network_failure

        self.cache = RequestCache(
            ttl=settings.cache_ttl,
            max_size=settings.cache_max_size,
            clock=self._clock,
            debug=settings.debug,
        )
        self.scheduler = RequestScheduler(
            executor=self._execute,
            cache=self.cache,
            max_concurrent=settings.max_concurrent_requests,
            is_online=lambda: self.monitor.is_online,
            defer=self._defer_offline,
            recover=self._defer_failed_write,
            clock=self._clock,
            debug=settings.debug,
        )

        self.breakers = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(
                failure_threshold=settings.breaker_threshold,
                reset_timeout=timedelta(seconds=settings.breaker_cooldown),
            ),
            clock=self._clock,
        )
        self.orchestrator = FallbackOrchestrator(
            primary=primary,
            secondary=secondary,
            breakers=self.breakers,
            retry_policy=RetryPolicy(
                retries=settings.retry_attempts,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                jitter=settings.retry_jitter,
            ),
            budget=SecondaryBudget(
                max_failures=settings.secondary_max_failures,
                recovery_window=settings.secondary_recovery_window,
            ),
            notices=self._notices,
            invalidate=self.scheduler.invalidate_prefixes,
            clock=self._clock,
            primary_timeout=settings.primary_timeout,
            secondary_timeout=settings.secondary_timeout,
        )

        self.queue = OfflineQueue(
            storage or MemoryStorage(),
            clock=self._clock,
            max_age=settings.offline_max_age,
            max_attempts=settings.offline_max_attempts,
            max_size=settings.offline_max_queue_size,
        )
        self.monitor = ConnectionMonitor(
            self.queue,
            replay_executor=self._replay,
            probe=probe,
            clock=self._clock,
            notices=self._notices,
            max_reconnect_attempts=settings.reconnect_max_attempts,
            reconnect_base_delay=settings.reconnect_base_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
        )
        self._drain_task: asyncio.Task | None = None

    @property
    def primary(self) -> Transport:
        return self.orchestrator.primary

    @property
    def secondary(self) -> Transport | None:
        return self.orchestrator.secondary

    async def start(self) -> int:
        """Restore the persisted offline queue and replay it if online."""
        restored = await self.queue.load()
        if restored and self.monitor.is_online:
            await self.monitor.drain()
        return restored

    async def call(
        self,
        operation: str,
        params: list[Any] | None = None,
        use_cache: bool | None = None,
    ) -> ApiResult:
        """
        Run a registered operation.

        Args:
            operation: Operation name (see default_registry)
            params: Positional parameters
            use_cache: Override the operation's cache rule; writes never cache

        Returns:
            ApiResult. Failures resolve rather than raise.

        Raises:
            UnknownOperationError: The operation is not registered
        """
        spec = self.registry.get(operation)
        cache = spec.use_cache if use_cache is None else (use_cache and spec.use_cache)
        return await self.scheduler.call(operation, params, use_cache=cache)

    async def call_batch(
        self, requests: list[tuple[str, list[Any]]]
    ) -> list[dict[str, Any]]:
        """Run several operations concurrently; one report entry per request."""
        return await self.scheduler.call_batch(
            [
                (operation, params, self.registry.get(operation).use_cache)
                for operation, params in requests
            ]
        )

    async def _execute(self, operation: str, params: list[Any]) -> ApiResult:
        """Scheduler executor: orchestrated primary/secondary execution."""
        spec = self.registry.get(operation)
        result = await self.orchestrator.execute(spec, params)
        if result.success:
            self._schedule_drain()
        return result

    def _schedule_drain(self) -> None:
        """A backend answered: replay anything an interrupted drain left queued."""
        if self._drain_task is not None and not self._drain_task.done():
            return
        if len(self.queue) == 0 or self.queue.is_replaying or not self.monitor.is_online:
            return
        self._drain_task = asyncio.create_task(self.monitor.drain())

    async def _replay(self, operation: str, params: list[Any]) -> ApiResult:
        """Replay executor: same route as a live call, without cache or deferral."""
        return await self.scheduler.call(
            operation, params, use_cache=False, allow_defer=False
        )

    async def _defer_offline(self, operation: str, params: list[Any]) -> ApiResult:
        """Disconnected: queue writes, refuse reads."""
        spec = self.registry.get(operation)
        if spec.queueable:
            operation_id = await self.queue.enqueue(operation, params)
            result = ApiResult.offline_result(operation, params, operation_id)
        else:
            logger.info(f"Offline, not running '{operation}'")
            result = ApiResult.offline_result(operation, params)

        notice = notice_for_result(result)
        if notice is not None:
            self._notices.notify(notice)
        return result

    async def _defer_failed_write(
        self, operation: str, params: list[Any], result: ApiResult
    ) -> ApiResult:
        """Queue a write both backends failed to reach instead of losing it."""
        spec = self.registry.get(operation)
        if (
            not self._defer_on_network_failure
            or not spec.queueable
            or result.offline
            or result.resolved_error_type not in CONNECTIVITY_ERROR_TYPES
        ):
            return result

        operation_id = await self.queue.enqueue(operation, params)
        logger.warning(
            f"'{operation}' could not reach any backend, queued for replay ({operation_id})"
        )
        deferred = ApiResult.offline_result(operation, params, operation_id)
        deferred.source = result.source
        notice = notice_for_result(deferred)
        if notice is not None:
            self._notices.notify(notice)
        return deferred

    def maintenance(self) -> dict[str, int]:
        """Periodic housekeeping: cache sweep, callback tombstones, URL rotation."""
        swept = self.cache.cleanup_expired()
        purged = 0
        if isinstance(self.secondary, CallbackTransport):
            purged = self.secondary.maintenance()
        return {"cache_expired": swept, "tombstones_purged": purged}

    async def close(self) -> None:
        """Stop background work and close transports."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            await asyncio.gather(self._drain_task, return_exceptions=True)
        self._drain_task = None
        await self.monitor.close()
        await self.scheduler.close()
        await self.primary.close()
        if self.secondary is not None:
            await self.secondary.close()

    async def __aenter__(self) -> "ResilientClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of all components."""
        return {
            "cache": self.cache.get_stats().to_dict(),
            "scheduler": self.scheduler.get_stats().to_dict(),
            "circuit_breakers": self.breakers.get_all_status(),
            "open_circuits": self.breakers.get_open_circuits(),
            "fallback": self.orchestrator.get_stats(),
            "offline_queue": self.queue.get_status(),
            "connection": self.monitor.get_status(),
        }

    async def reset_circuit(self, backend: str) -> bool:
        """Manually reset a circuit breaker."""
        return self.breakers.reset(backend)

    def clear_cache(self, operation: str | None = None) -> int:
        """Clear cached results, optionally for one operation only."""
        if operation is None:
            count = len(self.cache)
            self.cache.clear()
            return count
        return self.cache.invalidate_prefix(operation)


def create_client(
    settings: Settings | None = None,
    storage: QueueStorage | None = None,
    notices: NoticeSink | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
) -> ResilientClient:
    """Build a ResilientClient with the transports described by settings."""
    settings = settings or global_settings
    clock = clock or SystemClock()

    primary = HttpPrimaryTransport(
        settings.primary_base_url,
        api_key=settings.primary_api_key,
        http_client=http_client,
    )

    secondary = None
    if settings.secondary_url_list:
        secondary = CallbackTransport(
            settings.secondary_url_list,
            http_client=http_client,
            clock=clock,
            grace=settings.secondary_late_response_grace,
            rotation_interval=settings.secondary_url_rotation_interval,
        )
    else:
        logger.warning("No secondary URLs configured, fallback disabled")

    probe = None
    if settings.probe_url:
        probe = http_probe(
            settings.probe_url, timeout=settings.probe_timeout, http_client=http_client
        )

    return ResilientClient(
        primary=primary,
        secondary=secondary,
        storage=storage,
        probe=probe,
        notices=notices,
        clock=clock,
        settings=settings,
    )

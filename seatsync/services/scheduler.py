"""
RequestScheduler - cache lookup, in-flight de-duplication and bounded
concurrency in front of the backend executor.

When multiple callers request the same key simultaneously, only one
execution happens and every caller receives the same settled result.
At most `max_concurrent` executions run at once; the rest wait in a FIFO.
"""

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from seatsync.services.cache import RequestCache
from seatsync.services.clock import Clock, SystemClock
from seatsync.services.results import ApiResult

Executor = Callable[[str, list[Any]], Awaitable[ApiResult]]
Deferral = Callable[[str, list[Any]], Awaitable[ApiResult]]
Recovery = Callable[[str, list[Any], ApiResult], Awaitable[ApiResult]]


@dataclass
class QueuedRequest:
    """A call waiting for a concurrency slot."""

    id: int
    operation: str
    params: list[Any]
    key: str
    enqueued_at: float
    use_cache: bool
    allow_defer: bool
    generation: tuple[int, int]
    future: asyncio.Future = field(repr=False)


class RequestScheduler:
    """
    Single entry point for operation calls.

    Usage:
        scheduler = RequestScheduler(executor=orchestrate, cache=RequestCache())
        result = await scheduler.call("getSeatData", ["G1", "1", "A", False])
    """

    def __init__(
        self,
        executor: Executor,
        cache: RequestCache,
        max_concurrent: int = 5,
        is_online: Callable[[], bool] | None = None,
        defer: Deferral | None = None,
        recover: Recovery | None = None,
        clock: Clock | None = None,
        debug: bool = False,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._executor = executor
        self._cache = cache
        self._max_concurrent = max_concurrent
        self._is_online = is_online
        self._defer = defer
        self._recover = recover
        self._clock = clock or SystemClock()
        self._debug = debug

        self._in_flight: dict[str, asyncio.Future] = {}
        self._queue: deque[QueuedRequest] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task] = set()
        self._ids = itertools.count(1)
        self._stats = SchedulerStats()

    @property
    def cache(self) -> RequestCache:
        return self._cache

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    async def call(
        self,
        operation: str,
        params: list[Any] | None = None,
        use_cache: bool = True,
        allow_defer: bool = True,
    ) -> ApiResult:
        """
        Execute an operation through cache, de-duplication and the queue.

        Args:
            operation: Registered operation name
            params: Positional parameters
            use_cache: Serve from / store into the cache
            allow_defer: Hand the call to the offline hooks (disconnected, or
                failed in a way the recover hook can absorb)

        Returns:
            The settled ApiResult; identical object for de-duplicated callers
        """
        params = list(params or [])
        key = self._cache.generate_key(operation, params)

        if use_cache:
            entry = self._cache.get(key)
            if entry is not None:
                self._stats.cache_hits += 1
                return entry.value

        pending = self._in_flight.get(key)
        if pending is not None:
            self._stats.deduplicated += 1
            self._log(f"DEDUPE: Waiting for in-flight request: {key[:50]}...")
            return await asyncio.shield(pending)

        if allow_defer and self._defer is not None and self._is_offline():
            self._stats.deferred += 1
            return await self._defer(operation, params)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        self._queue.append(
            QueuedRequest(
                id=next(self._ids),
                operation=operation,
                params=params,
                key=key,
                enqueued_at=self._clock.now(),
                use_cache=use_cache,
                allow_defer=allow_defer,
                generation=self._cache.generation(operation),
                future=future,
            )
        )
        self._stats.total += 1
        self._log(f"QUEUED: {key[:50]}... (queue={len(self._queue)})")
        self._pump()

        return await asyncio.shield(future)

    async def call_batch(
        self, requests: list[tuple[str, list[Any]] | tuple[str, list[Any], bool]]
    ) -> list[dict[str, Any]]:
        """
        Run several calls concurrently and report each outcome.

        Each request is (operation, params) or (operation, params, use_cache).
        """
        coros = [
            self.call(req[0], req[1], req[2] if len(req) > 2 else True)
            for req in requests
        ]
        settled = await asyncio.gather(*coros, return_exceptions=True)

        report = []
        for request, outcome in zip(requests, settled):
            if isinstance(outcome, BaseException):
                report.append(
                    {"request": request, "success": False, "data": None, "error": outcome}
                )
            else:
                report.append(
                    {"request": request, "success": True, "data": outcome, "error": None}
                )
        return report

    def _is_offline(self) -> bool:
        return self._is_online is not None and not self._is_online()

    def _pump(self) -> None:
        """Start queued requests while slots are free."""
        while self._queue and self._active < self._max_concurrent:
            request = self._queue.popleft()
            self._active += 1
            task = asyncio.create_task(self._run(request))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, request: QueuedRequest) -> None:
        """Execute one request and settle its future."""
        result: ApiResult | None = None
        try:
            result = await self._executor(request.operation, request.params)
            if self._recover is not None and request.allow_defer and not result.success:
                result = await self._recover(request.operation, request.params, result)
        except asyncio.CancelledError:
            if not request.future.done():
                request.future.cancel()
            raise
        except Exception as e:
            if not request.future.done():
                request.future.set_exception(e)
        finally:
            self._active -= 1
            if self._in_flight.get(request.key) is request.future:
                del self._in_flight[request.key]

            if result is not None:
                if request.use_cache and result.success:
                    if self._cache.generation(request.operation) == request.generation:
                        self._cache.set(request.key, result)
                    else:
                        self._log(f"STALE: {request.key[:50]}... invalidated mid-flight")
                if not request.future.done():
                    request.future.set_result(result)

            self._log(f"DONE: {request.key[:50]}...")
            self._pump()

    def invalidate_prefixes(self, operations: list[str] | tuple[str, ...]) -> int:
        """
        Drop cached entries of the given read operations.

        In-flight reads of those operations are detached too: their current
        waiters still get the result, but new callers start a fresh execution
        and the stale result is never cached.
        """
        for operation in operations:
            prefix = f"{operation}:"
            for key in [k for k in self._in_flight if k.startswith(prefix)]:
                del self._in_flight[key]
        return sum(self._cache.invalidate_prefix(op) for op in operations)

    async def close(self) -> int:
        """Cancel running work and fail queued calls."""
        cancelled = 0
        while self._queue:
            request = self._queue.popleft()
            if not request.future.done():
                request.future.cancel()
            cancelled += 1

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        cancelled += len(tasks)

        self._in_flight.clear()
        if cancelled:
            logger.debug(f"[RequestScheduler] Cancelled {cancelled} requests")
        return cancelled

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_in_flight_keys(self) -> list[str]:
        return list(self._in_flight)

    def get_stats(self) -> "SchedulerStats":
        """Get scheduler statistics."""
        self._stats.active = self._active
        self._stats.queued = len(self._queue)
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RequestScheduler] {message}")


class SchedulerStats:
    """Statistics for scheduling and de-duplication."""

    def __init__(self):
        self.total: int = 0  # Executions started through the queue
        self.deduplicated: int = 0  # Calls served by an in-flight execution
        self.cache_hits: int = 0
        self.deferred: int = 0  # Calls handed to the offline hook
        self.active: int = 0
        self.queued: int = 0
        self.in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        """Calculate deduplication rate."""
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "cache_hits": self.cache_hits,
            "deferred": self.deferred,
            "active": self.active,
            "queued": self.queued,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }

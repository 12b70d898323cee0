"""
OfflineQueue - durable FIFO of writes captured while disconnected.

Operations are replayed strictly in submission order once connectivity
returns. During a replay:
- operations older than max_age are dropped without execution
- rejected operations (validation / auth / unknown) are dropped at once
- other failures keep the operation, in place, until max_attempts
- a connectivity failure stops the replay; the rest stay queued in order

Queue state is persisted after every mutation.
"""

import asyncio
import itertools
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from seatsync.offline.storage import QueueStorage
from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import (
    CONNECTIVITY_ERROR_TYPES,
    ErrorType,
    classify_exception,
    is_service_exception,
)
from seatsync.services.results import ApiResult

STORAGE_KEY = "offlineOperationQueue_v2"

# Failures a later replay cannot fix
REJECTED_ERROR_TYPES = frozenset(
    {
        ErrorType.VALIDATION,
        ErrorType.AUTH,
        ErrorType.UNKNOWN_OPERATION,
    }
)

ReplayExecutor = Callable[[str, list[Any]], Awaitable[ApiResult]]


class OfflineOperation(BaseModel):
    """A write waiting to be replayed."""

    id: str
    type: str
    args: list[Any] = Field(default_factory=list)
    timestamp: float
    attempts: int = 0


@dataclass
class ReplayReport:
    """Outcome of one replay pass."""

    succeeded: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    retained: list[str] = field(default_factory=list)
    interrupted: bool = False
    skipped: bool = False

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.dropped) + len(self.stale)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "dropped": len(self.dropped),
            "stale": len(self.stale),
            "retained": len(self.retained),
            "interrupted": self.interrupted,
            "skipped": self.skipped,
        }


class OfflineQueue:
    """
    Durable FIFO of offline writes.

    Usage:
        queue = OfflineQueue(MemoryStorage())
        await queue.load()

        op_id = await queue.enqueue("reserveSeats", ["G1", "1", "A", ["A1"]])
        report = await queue.replay(executor)
    """

    def __init__(
        self,
        storage: QueueStorage,
        clock: Clock | None = None,
        max_age: float = 300.0,
        max_attempts: int = 3,
        max_size: int = 200,
        storage_key: str = STORAGE_KEY,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._storage = storage
        self._clock = clock or SystemClock()
        self._max_age = max_age
        self._max_attempts = max_attempts
        self._max_size = max_size
        self._storage_key = storage_key

        self._items: list[OfflineOperation] = []
        self._persist_lock = asyncio.Lock()
        self._counter = itertools.count(1)
        self._replaying = False
        self._last_replay: ReplayReport | None = None

    async def load(self) -> int:
        """Restore persisted operations, skipping unreadable records."""
        records = await self._storage.load(self._storage_key)
        items = []
        for record in records:
            try:
                items.append(OfflineOperation.model_validate(record))
            except ValidationError as e:
                logger.warning(f"[OfflineQueue] Skipping unreadable operation: {e}")
        self._items = items
        if items:
            logger.info(f"[OfflineQueue] Restored {len(items)} pending operations")
        return len(items)

    def _new_id(self) -> str:
        millis = int(self._clock.timestamp() * 1000)
        return f"op_{millis}_{next(self._counter)}_{uuid.uuid4().hex[:6]}"

    async def enqueue(self, operation: str, args: list[Any]) -> str:
        """Append a write and persist; returns its operation id."""
        if len(self._items) >= self._max_size:
            dropped = self._items.pop(0)
            logger.warning(
                f"[OfflineQueue] Queue full ({self._max_size}), "
                f"dropping oldest operation {dropped.type} ({dropped.id})"
            )

        item = OfflineOperation(
            id=self._new_id(),
            type=operation,
            args=list(args),
            timestamp=self._clock.timestamp(),
        )
        self._items.append(item)
        await self._persist()

        logger.info(f"[OfflineQueue] Queued {operation} (ID: {item.id})")
        return item.id

    async def replay(
        self,
        executor: ReplayExecutor,
        is_online: Callable[[], bool] | None = None,
    ) -> ReplayReport:
        """
        Replay queued operations one at a time, oldest first.

        Args:
            executor: Runs one operation and resolves to an ApiResult
            is_online: Checked before each operation; False stops the pass

        Returns:
            ReplayReport; skipped=True if a replay was already running
        """
        if self._replaying:
            logger.debug("[OfflineQueue] Replay already in progress")
            return ReplayReport(skipped=True)

        self._replaying = True
        report = ReplayReport()
        try:
            batch = list(self._items)
            if batch:
                logger.info(f"[OfflineQueue] Replaying {len(batch)} operations")

            for index, item in enumerate(batch):
                if is_online is not None and not is_online():
                    report.interrupted = True
                    report.retained.extend(op.id for op in batch[index:])
                    logger.warning(
                        f"[OfflineQueue] Connection lost, "
                        f"{len(batch) - index} operations stay queued"
                    )
                    break

                if self._is_stale(item):
                    report.stale.append(item.id)
                    logger.warning(
                        f"[OfflineQueue] Dropping stale operation {item.type} ({item.id})"
                    )
                    await self._remove(item)
                    continue

                error_type = await self._execute(executor, item)

                if error_type is None:
                    report.succeeded.append(item.id)
                    await self._remove(item)
                    continue

                if error_type in REJECTED_ERROR_TYPES:
                    report.dropped.append(item.id)
                    logger.error(
                        f"[OfflineQueue] {item.type} ({item.id}) rejected: "
                        f"{error_type.value}, dropping"
                    )
                    await self._remove(item)
                    continue

                item.attempts += 1
                if item.attempts >= self._max_attempts:
                    report.dropped.append(item.id)
                    logger.warning(
                        f"[OfflineQueue] {item.type} ({item.id}) failed "
                        f"{item.attempts} times, dropping"
                    )
                    await self._remove(item)
                    continue

                report.retained.append(item.id)
                await self._persist()
                logger.info(
                    f"[OfflineQueue] {item.type} ({item.id}) will be retried "
                    f"({item.attempts}/{self._max_attempts})"
                )

                if error_type in CONNECTIVITY_ERROR_TYPES:
                    report.interrupted = True
                    report.retained.extend(op.id for op in batch[index + 1 :])
                    logger.warning("[OfflineQueue] Backend unreachable, stopping replay")
                    break

            if batch:
                logger.info(f"[OfflineQueue] Replay finished: {report.to_dict()}")
            return report
        finally:
            self._replaying = False
            self._last_replay = report

    async def _execute(
        self, executor: ReplayExecutor, item: OfflineOperation
    ) -> ErrorType | None:
        """Run one operation; None on success, else the failure's ErrorType."""
        try:
            result = await executor(item.type, list(item.args))
        except Exception as e:
            if not is_service_exception(e):
                raise
            logger.error(f"[OfflineQueue] {item.type} ({item.id}) raised: {e}")
            return classify_exception(e)

        if result.success:
            logger.info(f"[OfflineQueue] Synced {item.type} ({item.id})")
            return None
        return result.resolved_error_type or ErrorType.EXCEPTION

    def _is_stale(self, item: OfflineOperation) -> bool:
        return self._clock.timestamp() - item.timestamp > self._max_age

    async def _remove(self, item: OfflineOperation) -> None:
        self._items = [op for op in self._items if op.id != item.id]
        await self._persist()

    async def _persist(self) -> None:
        async with self._persist_lock:
            snapshot = [op.model_dump() for op in self._items]
            await self._storage.save(self._storage_key, snapshot)

    async def clear(self) -> int:
        count = len(self._items)
        self._items = []
        await self._persist()
        return count

    def pending(self) -> list[OfflineOperation]:
        return [op.model_copy() for op in self._items]

    @property
    def is_replaying(self) -> bool:
        return self._replaying

    def __len__(self) -> int:
        return len(self._items)

    def get_status(self) -> dict[str, Any]:
        return {
            "pending": len(self._items),
            "replaying": self._replaying,
            "max_size": self._max_size,
            "max_age": self._max_age,
            "max_attempts": self._max_attempts,
            "oldest": self._items[0].timestamp if self._items else None,
            "last_replay": self._last_replay.to_dict() if self._last_replay else None,
        }

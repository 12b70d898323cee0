from seatsync.offline.monitor import ConnectionMonitor, ConnectivityState
from seatsync.offline.queue import (
    STORAGE_KEY,
    OfflineOperation,
    OfflineQueue,
    ReplayReport,
)
from seatsync.offline.storage import MemoryStorage, QueueStorage, SqlStorage

__all__ = [
    "ConnectionMonitor",
    "ConnectivityState",
    "MemoryStorage",
    "OfflineOperation",
    "OfflineQueue",
    "QueueStorage",
    "ReplayReport",
    "STORAGE_KEY",
    "SqlStorage",
]

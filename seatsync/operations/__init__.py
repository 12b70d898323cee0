from seatsync.operations.registry import OperationRegistry, OperationSpec
from seatsync.operations.seats import (
    SEAT_READS,
    SeatReservationAPI,
    default_registry,
)

__all__ = [
    "OperationRegistry",
    "OperationSpec",
    "SEAT_READS",
    "SeatReservationAPI",
    "default_registry",
]

"""
Seat reservation operations.

default_registry() declares every operation the reservation backends
expose, with the read prefixes each write purges. SeatReservationAPI is the
typed facade the application calls.
"""

from typing import TYPE_CHECKING, Any

from seatsync.operations.registry import OperationRegistry, OperationSpec
from seatsync.services.results import ApiResult

if TYPE_CHECKING:
    from seatsync.services.client import ResilientClient

GET_SEAT_DATA = "getSeatData"
GET_SEAT_DATA_MINIMAL = "getSeatDataMinimal"
GET_SYSTEM_LOCK = "getSystemLock"

# Every seat write makes both seat-map reads stale
SEAT_READS = (GET_SEAT_DATA, GET_SEAT_DATA_MINIMAL)

# Capacity reports may run long; no client-side timeout beyond this
REPORT_TIMEOUT = 60.0


def _seat_write(name: str) -> OperationSpec:
    return OperationSpec(name, mutating=True, invalidates=SEAT_READS)


def default_registry() -> OperationRegistry:
    """All seat reservation operations with their routing rules."""
    return OperationRegistry(
        [
            # Reads
            OperationSpec(GET_SEAT_DATA),
            OperationSpec(GET_SEAT_DATA_MINIMAL),
            OperationSpec("getAllTimeslotsForGroup"),
            OperationSpec(GET_SYSTEM_LOCK),
            OperationSpec("getFullCapacityTimeslots", timeout=REPORT_TIMEOUT),
            OperationSpec("getCapacityStatistics", timeout=REPORT_TIMEOUT),
            OperationSpec("verifyModePassword", cacheable=False),
            OperationSpec("testApi", cacheable=False, allow_fallback=False),
            # Seat writes
            _seat_write("reserveSeats"),
            _seat_write("checkInSeat"),
            _seat_write("checkInMultipleSeats"),
            _seat_write("assignWalkInSeat"),
            _seat_write("assignWalkInSeats"),
            _seat_write("assignWalkInConsecutiveSeats"),
            _seat_write("updateSeatData"),
            _seat_write("updateMultipleSeats"),
            # Admin lock changes need a live password check
            OperationSpec(
                "setSystemLock",
                mutating=True,
                invalidates=(GET_SYSTEM_LOCK,),
                queue_offline=False,
            ),
        ]
    )


def _slot(group: str, day: str | int, timeslot: str | int) -> list[Any]:
    """Performance coordinates as the backends expect them."""
    return [group, str(day), str(timeslot)]


class SeatReservationAPI:
    """
    Typed seat operations on top of a ResilientClient.

    Usage:
        api = SeatReservationAPI(client)
        result = await api.get_seat_data("G1", 1, "A")
        if result.success:
            render(result.data)
    """

    def __init__(self, client: "ResilientClient"):
        self.client = client

    # ==================== Reads ====================

    async def get_seat_data(
        self,
        group: str,
        day: str | int,
        timeslot: str | int,
        is_admin: bool = False,
        is_super_admin: bool = False,
        use_cache: bool = True,
    ) -> ApiResult:
        return await self.client.call(
            GET_SEAT_DATA,
            [*_slot(group, day, timeslot), is_admin, is_super_admin],
            use_cache=use_cache,
        )

    async def get_seat_data_minimal(
        self,
        group: str,
        day: str | int,
        timeslot: str | int,
        is_admin: bool = False,
        use_cache: bool = True,
    ) -> ApiResult:
        return await self.client.call(
            GET_SEAT_DATA_MINIMAL,
            [*_slot(group, day, timeslot), is_admin],
            use_cache=use_cache,
        )

    async def get_all_timeslots_for_group(self, group: str) -> ApiResult:
        return await self.client.call("getAllTimeslotsForGroup", [group])

    async def get_system_lock(self, use_cache: bool = True) -> ApiResult:
        return await self.client.call(GET_SYSTEM_LOCK, [], use_cache=use_cache)

    async def get_full_capacity_timeslots(self) -> ApiResult:
        return await self.client.call("getFullCapacityTimeslots", [])

    async def get_capacity_statistics(self) -> ApiResult:
        return await self.client.call("getCapacityStatistics", [])

    async def verify_mode_password(self, mode: str, password: str = "") -> ApiResult:
        return await self.client.call("verifyModePassword", [mode, password])

    async def test_api(self) -> ApiResult:
        return await self.client.call("testApi", [])

    # ==================== Writes ====================

    async def reserve_seats(
        self, group: str, day: str | int, timeslot: str | int, seat_ids: list[str]
    ) -> ApiResult:
        return await self.client.call(
            "reserveSeats", [*_slot(group, day, timeslot), list(seat_ids)]
        )

    async def check_in_seat(
        self, group: str, day: str | int, timeslot: str | int, seat_id: str
    ) -> ApiResult:
        return await self.client.call(
            "checkInSeat", [*_slot(group, day, timeslot), seat_id]
        )

    async def check_in_multiple_seats(
        self, group: str, day: str | int, timeslot: str | int, seat_ids: list[str]
    ) -> ApiResult:
        return await self.client.call(
            "checkInMultipleSeats", [*_slot(group, day, timeslot), list(seat_ids)]
        )

    async def assign_walk_in_seat(
        self, group: str, day: str | int, timeslot: str | int
    ) -> ApiResult:
        return await self.client.call("assignWalkInSeat", _slot(group, day, timeslot))

    async def assign_walk_in_seats(
        self, group: str, day: str | int, timeslot: str | int, count: int
    ) -> ApiResult:
        if count < 1:
            raise ValueError("count must be at least 1")
        return await self.client.call(
            "assignWalkInSeats", [*_slot(group, day, timeslot), count]
        )

    async def assign_walk_in_consecutive_seats(
        self, group: str, day: str | int, timeslot: str | int, count: int
    ) -> ApiResult:
        if count < 1:
            raise ValueError("count must be at least 1")
        return await self.client.call(
            "assignWalkInConsecutiveSeats", [*_slot(group, day, timeslot), count]
        )

    async def update_seat_data(
        self,
        group: str,
        day: str | int,
        timeslot: str | int,
        seat_id: str,
        column_c: Any,
        column_d: Any,
        column_e: Any = None,
    ) -> ApiResult:
        """Overwrite one seat row (status, reserver, check-in columns)."""
        return await self.client.call(
            "updateSeatData",
            [*_slot(group, day, timeslot), seat_id, column_c, column_d, column_e],
        )

    async def update_multiple_seats(
        self,
        group: str,
        day: str | int,
        timeslot: str | int,
        updates: list[dict[str, Any]],
    ) -> ApiResult:
        return await self.client.call(
            "updateMultipleSeats", [*_slot(group, day, timeslot), list(updates)]
        )

    async def set_system_lock(self, locked: bool, password: str = "") -> ApiResult:
        return await self.client.call("setSystemLock", [locked is True, password])

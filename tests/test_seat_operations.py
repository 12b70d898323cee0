"""
End-to-end tests of the seat operations through a ResilientClient.
"""

import asyncio

import pytest

from conftest import FakeTransport
from seatsync.offline.queue import STORAGE_KEY
from seatsync.offline.storage import MemoryStorage
from seatsync.operations import SeatReservationAPI
from seatsync.services.errors import (
    ErrorType,
    RequestTimeoutError,
    TransportError,
    UnknownOperationError,
)
from seatsync.services.notices import NoticeKind
from seatsync.services.results import ApiResult


@pytest.mark.asyncio
async def test_repeated_reads_are_served_from_cache(make_client):
    primary = FakeTransport("primary", ApiResult.ok({"A1": "free"}))
    api = SeatReservationAPI(make_client(primary))

    first = await api.get_seat_data("G1", 1, "A")
    second = await api.get_seat_data("G1", 1, "A")

    assert first.data == {"A1": "free"}
    assert second is first
    assert primary.calls == [("getSeatData", ["G1", "1", "A", False, False])]


@pytest.mark.asyncio
async def test_use_cache_false_forces_a_fresh_read(make_client):
    primary = FakeTransport("primary")
    api = SeatReservationAPI(make_client(primary))

    await api.get_seat_data("G1", 1, "A")
    await api.get_seat_data("G1", 1, "A", use_cache=False)

    assert len(primary.calls) == 2


@pytest.mark.asyncio
async def test_reservation_purges_seat_reads_only(make_client):
    client = make_client(FakeTransport("primary"))
    api = SeatReservationAPI(client)

    await api.get_seat_data("G1", 1, "A")
    await api.get_seat_data_minimal("G1", 1, "A")
    await api.get_system_lock()
    assert len(client.cache) == 3

    result = await api.reserve_seats("G1", 1, "A", ["A1", "A2"])

    assert result.success
    assert len(client.cache) == 1
    assert client.cache.generate_key("getSystemLock", []) in client.cache


@pytest.mark.asyncio
async def test_writes_are_never_cached(make_client):
    primary = FakeTransport("primary")
    api = SeatReservationAPI(make_client(primary))

    await api.check_in_seat("G1", 1, "A", "A1")
    await api.check_in_seat("G1", 1, "A", "A1")

    assert len(primary.calls) == 2


@pytest.mark.asyncio
async def test_offline_write_is_queued_and_replayed(make_client, notices):
    primary = FakeTransport("primary")
    client = make_client(primary)
    api = SeatReservationAPI(client)
    await client.monitor.handle_offline(reconnect=False)

    result = await api.reserve_seats("G1", 1, "A", ["A1"])

    assert result.offline
    assert result.error_type == ErrorType.OFFLINE_DELEGATE.value
    assert result.operation_id is not None
    assert primary.calls == []
    assert len(notices.of_kind(NoticeKind.QUEUED_OFFLINE)) == 1

    report = await client.monitor.handle_online()

    assert report.succeeded == [result.operation_id]
    assert primary.calls == [("reserveSeats", ["G1", "1", "A", ["A1"]])]
    assert len(client.queue) == 0


@pytest.mark.asyncio
async def test_offline_read_is_refused_without_queueing(make_client):
    primary = FakeTransport("primary")
    client = make_client(primary)
    await client.monitor.handle_offline(reconnect=False)

    result = await SeatReservationAPI(client).get_seat_data("G1", 1, "A")

    assert result.offline
    assert result.error_type == ErrorType.OFFLINE.value
    assert result.operation_id is None
    assert len(client.queue) == 0
    assert primary.calls == []


@pytest.mark.asyncio
async def test_system_lock_changes_are_not_queued_offline(make_client):
    client = make_client(FakeTransport("primary"))
    await client.monitor.handle_offline(reconnect=False)

    result = await SeatReservationAPI(client).set_system_lock(True, "pw")

    assert result.error_type == ErrorType.OFFLINE.value
    assert len(client.queue) == 0


@pytest.mark.asyncio
async def test_unreachable_backends_queue_the_write(make_client):
    primary = FakeTransport("primary", TransportError("connection refused"))
    client = make_client(primary)

    result = await SeatReservationAPI(client).assign_walk_in_seat("G1", 1, "A")

    assert result.error_type == ErrorType.OFFLINE_DELEGATE.value
    assert [op.type for op in client.queue.pending()] == ["assignWalkInSeat"]
    assert len(primary.calls) == 3


@pytest.mark.asyncio
async def test_timed_out_write_is_not_queued(make_client):
    primary = FakeTransport("primary", RequestTimeoutError("primary", 20))
    client = make_client(primary)

    result = await SeatReservationAPI(client).reserve_seats("G1", 1, "A", ["A1"])

    assert not result.success
    assert result.resolved_error_type == ErrorType.TIMEOUT
    assert len(client.queue) == 0


@pytest.mark.asyncio
async def test_start_replays_a_persisted_queue(make_client, clock):
    storage = MemoryStorage(
        {
            STORAGE_KEY: [
                {
                    "id": "op_1",
                    "type": "checkInSeat",
                    "args": ["G1", "1", "A", "A1"],
                    "timestamp": clock.timestamp() - 10,
                    "attempts": 0,
                }
            ]
        }
    )
    primary = FakeTransport("primary")
    client = make_client(primary, storage=storage)

    assert await client.start() == 1

    assert primary.calls == [("checkInSeat", ["G1", "1", "A", "A1"])]
    assert storage.peek(STORAGE_KEY) == []


@pytest.mark.asyncio
async def test_unknown_operations_raise(make_client):
    client = make_client()

    with pytest.raises(UnknownOperationError):
        await client.call("dropAllSeats", [])


@pytest.mark.asyncio
async def test_walk_in_counts_must_be_positive(make_client):
    api = SeatReservationAPI(make_client())

    with pytest.raises(ValueError):
        await api.assign_walk_in_seats("G1", 1, "A", 0)
    with pytest.raises(ValueError):
        await api.assign_walk_in_consecutive_seats("G1", 1, "A", -1)


@pytest.mark.asyncio
async def test_call_batch_reports_each_operation(make_client):
    client = make_client(FakeTransport("primary", ApiResult.ok([])))

    report = await client.call_batch(
        [("getAllTimeslotsForGroup", ["G1"]), ("getSystemLock", [])]
    )

    assert [entry["success"] for entry in report] == [True, True]
    assert all(entry["data"].success for entry in report)


@pytest.mark.asyncio
async def test_health_status_covers_every_component(make_client):
    client = make_client()
    await SeatReservationAPI(client).get_system_lock()

    health = client.get_health_status()

    assert set(health) == {
        "cache",
        "scheduler",
        "circuit_breakers",
        "open_circuits",
        "fallback",
        "offline_queue",
        "connection",
    }
    assert health["connection"]["state"] == "online"
    assert health["fallback"]["total_requests"] == 1


@pytest.mark.asyncio
async def test_clear_cache_by_operation(make_client):
    client = make_client()
    api = SeatReservationAPI(client)
    await api.get_seat_data("G1", 1, "A")
    await api.get_system_lock()

    assert client.clear_cache("getSeatData") == 1
    assert client.clear_cache() == 1
    assert len(client.cache) == 0


@pytest.mark.asyncio
async def test_interrupted_replay_resumes_after_the_backend_recovers(make_client, clock):
    storage = MemoryStorage(
        {
            STORAGE_KEY: [
                {
                    "id": "op_1",
                    "type": "reserveSeats",
                    "args": ["G1", "1", "A", ["A1"]],
                    "timestamp": clock.timestamp() - 10,
                    "attempts": 0,
                }
            ]
        }
    )
    outage = {"on": True}

    def answer(operation, params):
        if outage["on"]:
            return TransportError("connection refused")
        return ApiResult.ok({"operation": operation})

    primary = FakeTransport("primary", answer)
    client = make_client(primary, storage=storage)

    await client.start()
    assert client.monitor.is_online
    assert len(client.queue) == 1

    outage["on"] = False
    result = await client.call("getSeatData", ["G1", "1", "A", False, False])
    assert result.success

    for _ in range(100):
        if len(client.queue) == 0:
            break
        await asyncio.sleep(0)

    assert len(client.queue) == 0
    assert storage.peek(STORAGE_KEY) == []
    assert [op for op, _ in primary.calls].count("reserveSeats") == 4

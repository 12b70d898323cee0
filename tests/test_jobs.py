"""
Tests for the maintenance job scheduler.
"""

import pytest

from conftest import FakeTransport
from seatsync.services.jobs import MaintenanceScheduler


async def always_reachable() -> bool:
    return True


@pytest.mark.asyncio
async def test_jobs_are_registered_on_start(make_client):
    jobs = MaintenanceScheduler(make_client(probe=always_reachable))

    jobs.start()
    try:
        assert jobs.is_running()
        assert sorted(jobs.get_jobs()) == [
            "cache_sweep",
            "connection_probe",
            "transport_housekeeping",
        ]
    finally:
        jobs.stop()
    assert not jobs.is_running()


@pytest.mark.asyncio
async def test_probe_job_needs_a_probe(make_client):
    jobs = MaintenanceScheduler(make_client())

    jobs.start()
    try:
        assert "connection_probe" not in jobs.get_jobs()
    finally:
        jobs.stop()


@pytest.mark.asyncio
async def test_jobs_run_against_the_client(make_client, clock):
    client = make_client(probe=always_reachable)
    await client.monitor.handle_offline(reconnect=False)
    client.cache.set("getSystemLock:[]", {"locked": False})
    clock.advance(61)
    jobs = MaintenanceScheduler(client)

    await jobs.sweep_cache_job()
    await jobs.probe_connection_job()
    await jobs.housekeeping_job()

    assert len(client.cache) == 0
    assert client.monitor.is_online


def test_every_job_is_wrapped():
    for job in (
        MaintenanceScheduler.sweep_cache_job,
        MaintenanceScheduler.probe_connection_job,
        MaintenanceScheduler.housekeeping_job,
    ):
        assert hasattr(job, "__wrapped__")


@pytest.mark.asyncio
async def test_housekeeping_retries_queued_writes(make_client):
    primary = FakeTransport("primary")
    client = make_client(primary)
    await client.queue.enqueue("checkInSeat", ["G1", "1", "A", "A1"])

    await MaintenanceScheduler(client).housekeeping_job()

    assert primary.calls == [("checkInSeat", ["G1", "1", "A", "A1"])]
    assert len(client.queue) == 0

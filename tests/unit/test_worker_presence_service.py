"""
Tests for the worker presence service.
"""

import asyncio

import pytest

from app.models.domain.worker_domain import Worker, WorkerActivity
from app.services.infrastructure.twilio_service import TwilioServiceError
from app.services.presence.worker_presence_service import WorkerNotFoundError


@pytest.fixture
def activity_sids(monkeypatch):
    monkeypatch.setattr("app.config.settings.TASKROUTER_WORKSPACE_SID", "WS123")
    monkeypatch.setattr("app.config.settings.TASKROUTER_ACTIVITY_AVAILABLE_SID", "WA-available")
    monkeypatch.setattr("app.config.settings.TASKROUTER_ACTIVITY_UNAVAILABLE_SID", "WA-unavailable")
    monkeypatch.setattr("app.config.settings.TASKROUTER_ACTIVITY_OFFLINE_SID", "WA-offline")


@pytest.mark.asyncio
async def test_get_returns_state_and_attributes(presence_service):
    snapshot = await presence_service.get("worker-123")

    assert snapshot.state is WorkerActivity.OFFLINE
    assert snapshot.attributes["email"] == "rep@example.com"
    assert snapshot.attributes["has_worker"] is True
    assert snapshot.attributes["simultaneous_ring"] is False


@pytest.mark.asyncio
async def test_get_unknown_worker(presence_service):
    with pytest.raises(WorkerNotFoundError):
        await presence_service.get("nobody")


@pytest.mark.asyncio
@pytest.mark.parametrize("state", ["available", "unavailable", "offline"])
async def test_set_then_get_reads_own_write(presence_service, state):
    await presence_service.set("worker-123", state)

    assert (await presence_service.get("worker-123")).state == state


@pytest.mark.asyncio
async def test_set_rejects_unknown_state(presence_service, fake_repository):
    with pytest.raises(ValueError):
        await presence_service.set("worker-123", "on-break")

    assert fake_repository.writes == []


@pytest.mark.asyncio
async def test_set_unknown_worker(presence_service):
    with pytest.raises(WorkerNotFoundError):
        await presence_service.set("nobody", WorkerActivity.AVAILABLE)


@pytest.mark.asyncio
async def test_set_publishes_to_subscribers(presence_service):
    subscription = await presence_service.subscribe("worker-123")
    assert await subscription.next_message(timeout=1) == {"status": "offline"}

    await presence_service.set("worker-123", WorkerActivity.AVAILABLE)

    assert await subscription.next_message(timeout=1) == {"status": "available"}
    presence_service.unsubscribe(subscription)


@pytest.mark.asyncio
async def test_late_subscriber_gets_final_state(presence_service):
    for state in ("available", "unavailable", "available", "offline"):
        await presence_service.set("worker-123", state)

    subscription = await presence_service.subscribe("worker-123")

    assert await subscription.next_message(timeout=1) == {"status": "offline"}


@pytest.mark.asyncio
async def test_concurrent_writes_are_serialized(presence_service, fake_repository):
    states = [WorkerActivity.AVAILABLE, WorkerActivity.UNAVAILABLE, WorkerActivity.OFFLINE] * 5

    await asyncio.gather(*(presence_service.set("worker-123", s) for s in states))

    assert len(fake_repository.writes) == len(states)
    last_written = fake_repository.writes[-1][1]
    assert (await presence_service.get("worker-123")).state is last_written


@pytest.mark.asyncio
async def test_set_mirrors_taskrouter_activity(presence_service, fake_twilio, activity_sids):
    await presence_service.set("worker-123", WorkerActivity.AVAILABLE)

    assert fake_twilio.activity_updates == [("WS123", "WK123", "WA-available")]


@pytest.mark.asyncio
async def test_mirror_failure_does_not_fail_write(presence_service, fake_twilio, activity_sids):
    fake_twilio.activity_error = TwilioServiceError("boom", status_code=500)

    state = await presence_service.set("worker-123", WorkerActivity.UNAVAILABLE)

    assert state is WorkerActivity.UNAVAILABLE
    assert (await presence_service.get("worker-123")).state is WorkerActivity.UNAVAILABLE


@pytest.mark.asyncio
async def test_mirror_skipped_without_worker_sid(presence_service, fake_repository, fake_twilio, activity_sids):
    fake_repository.workers["worker-123"] = fake_repository.workers["worker-123"].model_copy(
        update={"taskrouter_worker_sid": None}
    )

    await presence_service.set("worker-123", WorkerActivity.AVAILABLE)

    assert fake_twilio.activity_updates == []


@pytest.mark.asyncio
async def test_is_exempt(presence_service, fake_repository):
    fake_repository.workers["ring-1"] = Worker(
        worker_id="ring-1", email="ring@example.com", simultaneous_ring=True
    )

    assert await presence_service.is_exempt("ring-1") is True
    assert await presence_service.is_exempt("worker-123") is False

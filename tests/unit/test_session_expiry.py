"""
Tests for the daily forced logout scheduler.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.client.presence_client import PresenceClient, PresenceClientError
from app.client.session_expiry import LOGIN_REDIRECT, SessionExpiryScheduler, next_cutoff
from app.models.domain.worker_domain import WorkerActivity


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _client(simultaneous_ring: bool = False):
    client = MagicMock()
    client.get_status = AsyncMock(
        return_value={"status": "available", "attributes": {"simultaneous_ring": simultaneous_ring}}
    )
    client.set_status = AsyncMock(return_value=WorkerActivity.OFFLINE)
    client.logout = AsyncMock()
    return client


def test_cutoff_before_hour_is_same_day():
    assert next_cutoff(datetime(2024, 1, 1, 19, 59), 20) == datetime(2024, 1, 1, 20, 0)


def test_cutoff_after_hour_is_next_day():
    assert next_cutoff(datetime(2024, 1, 1, 20, 1), 20) == datetime(2024, 1, 2, 20, 0)


def test_cutoff_exactly_at_hour_is_next_day():
    assert next_cutoff(datetime(2024, 1, 1, 20, 0), 20) == datetime(2024, 1, 2, 20, 0)


def test_cutoff_rolls_over_month_end():
    assert next_cutoff(datetime(2024, 1, 31, 21, 0), 20) == datetime(2024, 2, 1, 20, 0)


@pytest.mark.asyncio
async def test_fires_once_after_cutoff():
    clock = FakeClock(datetime(2024, 1, 1, 19, 58))
    client = _client()
    navigate = MagicMock()
    scheduler = SessionExpiryScheduler(client, navigate, cutoff_hour=20, poll_interval=3600, clock=clock)

    await scheduler.start()
    assert await scheduler.check() is False

    clock.advance(minutes=3)
    assert await scheduler.check() is True
    assert await scheduler.check() is False

    client.set_status.assert_awaited_once_with(WorkerActivity.OFFLINE)
    client.logout.assert_awaited_once()
    navigate.assert_called_once_with(LOGIN_REDIRECT)
    scheduler.stop()


@pytest.mark.asyncio
async def test_visibility_regain_rechecks_cutoff():
    clock = FakeClock(datetime(2024, 1, 1, 9, 0))
    client = _client()
    navigate = AsyncMock()
    scheduler = SessionExpiryScheduler(client, navigate, poll_interval=3600, clock=clock)
    await scheduler.start()

    # Device slept through the evening
    clock.advance(hours=12)
    assert await scheduler.on_visibility_change(False) is False
    assert await scheduler.on_visibility_change(True) is True

    navigate.assert_awaited_once_with(LOGIN_REDIRECT)


@pytest.mark.asyncio
async def test_exempt_worker_never_logged_out_across_days():
    clock = FakeClock(datetime(2024, 1, 1, 8, 0))
    client = _client(simultaneous_ring=True)
    navigate = MagicMock()
    scheduler = SessionExpiryScheduler(client, navigate, poll_interval=3600, clock=clock)
    await scheduler.start()

    for _ in range(24 * 4):
        clock.advance(hours=1)
        await scheduler.check()
        await scheduler.on_visibility_change(True)

    assert scheduler.exempt is True
    client.set_status.assert_not_awaited()
    client.logout.assert_not_awaited()
    navigate.assert_not_called()


@pytest.mark.asyncio
async def test_exemption_lookup_failure_enforces_logout():
    clock = FakeClock(datetime(2024, 1, 1, 19, 0))
    client = _client(simultaneous_ring=True)
    client.get_status.side_effect = PresenceClientError("timeout", operation="get_status")
    scheduler = SessionExpiryScheduler(client, MagicMock(), poll_interval=3600, clock=clock)
    await scheduler.start()

    clock.advance(hours=2)

    assert scheduler.exempt is False
    assert await scheduler.check() is True


@pytest.mark.asyncio
async def test_each_logout_step_is_attempted_when_earlier_ones_fail():
    clock = FakeClock(datetime(2024, 1, 1, 19, 0))
    client = _client()
    client.set_status.side_effect = PresenceClientError("offline failed", operation="set_status")
    client.logout.side_effect = PresenceClientError("logout failed", operation="logout")
    navigate = MagicMock()
    scheduler = SessionExpiryScheduler(client, navigate, poll_interval=3600, clock=clock)
    await scheduler.start()

    clock.advance(hours=2)
    await scheduler.check()

    client.set_status.assert_awaited_once()
    client.logout.assert_awaited_once()
    navigate.assert_called_once_with(LOGIN_REDIRECT)
    assert scheduler.fired is True


@pytest.mark.asyncio
async def test_navigation_failure_is_logged_not_raised():
    clock = FakeClock(datetime(2024, 1, 1, 21, 0))
    navigate = MagicMock(side_effect=RuntimeError("window closed"))
    scheduler = SessionExpiryScheduler(_client(), navigate, poll_interval=3600, clock=clock)
    await scheduler.start()

    clock.advance(days=1)

    assert await scheduler.check() is True


@pytest.mark.asyncio
async def test_polling_timer_fires_and_stops():
    clock = FakeClock(datetime(2024, 1, 1, 19, 59, 59))
    client = _client()
    scheduler = SessionExpiryScheduler(client, MagicMock(), poll_interval=0.01, clock=clock)
    await scheduler.start()

    clock.advance(seconds=2)
    task = scheduler._task
    await task

    assert scheduler.fired is True
    client.logout.assert_awaited_once()


@pytest.mark.asyncio
async def test_stop_clears_timer():
    clock = FakeClock(datetime(2024, 1, 1, 9, 0))
    scheduler = SessionExpiryScheduler(_client(), MagicMock(), poll_interval=3600, clock=clock)
    await scheduler.start()
    task = scheduler._task

    scheduler.stop()

    assert scheduler._task is None
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


def _http_client(handler, calls: list) -> PresenceClient:
    def recording(request):
        calls.append((request.method, request.url.path))
        return handler(request)

    http_client = httpx.AsyncClient(
        base_url="https://calls.example.com", transport=httpx.MockTransport(recording)
    )
    return PresenceClient("https://calls.example.com", http_client=http_client)


@pytest.mark.asyncio
async def test_html_reply_to_offline_write_still_logs_out_and_navigates():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"status": "available", "attributes": {}})
        if request.url.path == "/api/taskrouter/worker-status":
            return httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})
        return httpx.Response(204)

    calls = []
    navigate = MagicMock()
    clock = FakeClock(datetime(2024, 1, 1, 19, 0))
    scheduler = SessionExpiryScheduler(_http_client(handler, calls), navigate, poll_interval=3600, clock=clock)
    await scheduler.start()

    clock.advance(hours=2)
    assert await scheduler.check() is True

    assert calls == [
        ("GET", "/api/taskrouter/worker-status"),
        ("POST", "/api/taskrouter/worker-status"),
        ("POST", "/api/auth/logout"),
    ]
    navigate.assert_called_once_with(LOGIN_REDIRECT)


@pytest.mark.asyncio
async def test_html_reply_to_exemption_lookup_enforces_logout():
    def handler(request):
        return httpx.Response(200, text="<html>login</html>", headers={"content-type": "text/html"})

    calls = []
    clock = FakeClock(datetime(2024, 1, 1, 9, 0))
    scheduler = SessionExpiryScheduler(_http_client(handler, calls), MagicMock(), poll_interval=3600, clock=clock)

    await scheduler.start()

    assert scheduler.exempt is False
    assert scheduler.cutoff == datetime(2024, 1, 1, 20, 0)
    scheduler.stop()


@pytest.mark.asyncio
async def test_null_attributes_resolve_to_not_exempt():
    client = _client()
    client.get_status.return_value = {"status": "available", "attributes": None}
    scheduler = SessionExpiryScheduler(client, MagicMock(), poll_interval=3600, clock=FakeClock(datetime(2024, 1, 1, 9, 0)))

    await scheduler.start()

    assert scheduler.exempt is False
    scheduler.stop()


@pytest.mark.asyncio
async def test_unexpected_step_error_does_not_stop_later_steps():
    client = _client()
    client.set_status.side_effect = ValueError("bad body")
    navigate = MagicMock()
    clock = FakeClock(datetime(2024, 1, 1, 19, 0))
    scheduler = SessionExpiryScheduler(client, navigate, poll_interval=3600, clock=clock)
    await scheduler.start()

    clock.advance(hours=2)
    await scheduler.check()

    client.logout.assert_awaited_once()
    navigate.assert_called_once_with(LOGIN_REDIRECT)

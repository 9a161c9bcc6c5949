"""
Tests for the Twilio REST wrapper.
"""

from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioRestException

from app.services.infrastructure.twilio_service import TwilioService, TwilioServiceError


def _rest_error(status: int, code: int | None = None) -> TwilioRestException:
    return TwilioRestException(status, "https://taskrouter.twilio.com/v1/...", msg="error", code=code)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def service(client):
    return TwilioService(client=client)


@pytest.mark.asyncio
async def test_redirect_call_updates_call_url(service, client):
    await service.redirect_call("CA123", "https://calls.example.com/api/taskrouter/voicemail")

    client.calls.assert_called_once_with("CA123")
    client.calls.return_value.update.assert_called_once_with(
        url="https://calls.example.com/api/taskrouter/voicemail", method="POST"
    )


@pytest.mark.asyncio
async def test_redirect_failure_raises_service_error(service, client):
    client.calls.return_value.update.side_effect = _rest_error(400, 21220)

    with pytest.raises(TwilioServiceError) as exc:
        await service.redirect_call("CA123", "https://calls.example.com/vm")

    assert exc.value.status_code == 400
    assert exc.value.error_code == 21220


@pytest.mark.asyncio
async def test_cancel_task(service, client):
    canceled = await service.cancel_task("WS123", "WT123", "Redirected to voicemail")

    assert canceled is True
    task = client.taskrouter.v1.workspaces.return_value.tasks
    task.assert_called_once_with("WT123")
    task.return_value.update.assert_called_once_with(
        assignment_status="canceled", reason="Redirected to voicemail"
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("status,code", [(404, 20404), (400, 20001)])
async def test_cancel_already_terminal_task_is_noop(service, client, status, code):
    tasks = client.taskrouter.v1.workspaces.return_value.tasks
    tasks.return_value.update.side_effect = _rest_error(status, code)

    assert await service.cancel_task("WS123", "WT123", "reason") is False


@pytest.mark.asyncio
async def test_cancel_other_failure_raises(service, client):
    tasks = client.taskrouter.v1.workspaces.return_value.tasks
    tasks.return_value.update.side_effect = _rest_error(503)

    with pytest.raises(TwilioServiceError) as exc:
        await service.cancel_task("WS123", "WT123", "reason")

    assert exc.value.operation == "cancel_task"


@pytest.mark.asyncio
async def test_update_worker_activity(service, client):
    await service.update_worker_activity("WS123", "WK123", "WA-available")

    workers = client.taskrouter.v1.workspaces.return_value.workers
    workers.assert_called_once_with("WK123")
    workers.return_value.update.assert_called_once_with(activity_sid="WA-available")


def test_unconfigured_service_reports_it(monkeypatch):
    monkeypatch.setattr("app.services.infrastructure.twilio_service.settings.TWILIO_ACCOUNT_SID", None)
    monkeypatch.setattr("app.services.infrastructure.twilio_service.settings.TWILIO_AUTH_TOKEN", None)

    service = TwilioService()

    assert service.configured is False
    with pytest.raises(TwilioServiceError):
        service._get_client()

"""
Twilio REST operations used by the call routing core.

Thin async wrapper over the Twilio helper library. Calls carry no internal
retry; TaskRouter re-delivers the inbound webhook instead.
"""

import asyncio

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.taskrouter_domain import AssignmentStatus

logger = get_logger(__name__)

# TaskRouter answers 404 for unknown/expired tasks and 400 (20001) when the
# task is no longer pending or reserved.
TASK_GONE_STATUS = 404
TASK_NOT_CANCELABLE_CODE = 20001


class TwilioServiceError(Exception):
    """Raised when a Twilio call fails (telephony upstream unavailable)."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        error_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.error_code = error_code
        self.recoverable = recoverable


def _is_terminal_task_error(error: TwilioRestException) -> bool:
    if error.status == TASK_GONE_STATUS:
        return True
    return error.status == 400 and error.code == TASK_NOT_CANCELABLE_CODE


class TwilioService:
    """Voice and TaskRouter operations on the configured account."""

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or settings.twilio_configured()

    def _get_client(self) -> Client:
        if self._client is None:
            if not settings.twilio_configured():
                raise TwilioServiceError(
                    "Twilio credentials not configured", operation="client", recoverable=False
                )
            self._client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        return self._client

    async def redirect_call(self, call_sid: str, url: str) -> None:
        """Point a live call leg at new TwiML."""

        def _redirect():
            self._get_client().calls(call_sid).update(url=url, method="POST")

        try:
            await asyncio.to_thread(_redirect)
        except TwilioRestException as e:
            raise TwilioServiceError(
                f"Call redirect failed: {e.msg}",
                operation="redirect_call",
                status_code=e.status,
                error_code=e.code,
            ) from e

        logger.info("Call redirected", call_sid=call_sid, url=url)

    async def cancel_task(self, workspace_sid: str, task_sid: str, reason: str) -> bool:
        """
        Cancel a TaskRouter task.

        Returns:
            True if this call canceled the task, False if it was already
            canceled, completed or gone.
        """

        def _cancel():
            self._get_client().taskrouter.v1.workspaces(workspace_sid).tasks(task_sid).update(
                assignment_status=AssignmentStatus.CANCELED.value,
                reason=reason,
            )

        try:
            await asyncio.to_thread(_cancel)
        except TwilioRestException as e:
            if _is_terminal_task_error(e):
                logger.info(
                    "Task already terminal, cancel is a no-op",
                    task_sid=task_sid,
                    status_code=e.status,
                    error_code=e.code,
                )
                return False
            raise TwilioServiceError(
                f"Task cancel failed: {e.msg}",
                operation="cancel_task",
                status_code=e.status,
                error_code=e.code,
            ) from e

        logger.info("Task canceled", task_sid=task_sid, reason=reason)
        return True

    async def update_worker_activity(
        self, workspace_sid: str, worker_sid: str, activity_sid: str
    ) -> None:
        """Move a TaskRouter worker to the given activity."""

        def _update():
            self._get_client().taskrouter.v1.workspaces(workspace_sid).workers(worker_sid).update(
                activity_sid=activity_sid
            )

        try:
            await asyncio.to_thread(_update)
        except TwilioRestException as e:
            raise TwilioServiceError(
                f"Worker activity update failed: {e.msg}",
                operation="update_worker_activity",
                status_code=e.status,
                error_code=e.code,
            ) from e

        logger.info("Worker activity updated", worker_sid=worker_sid, activity_sid=activity_sid)


# Singleton instance for application use
twilio_service = TwilioService()

"""
Voicemail fallback coordinator.

When a task lands in the voicemail queue the live call is redirected to a
record-and-transcribe TwiML flow and the task is retired. TaskRouter delivers
callbacks at least once, so every step here is safe to repeat:

- the redirect is skipped when a marker says it already succeeded
- the cancel treats an already terminal task as success
"""

from typing import Any, Protocol
from urllib.parse import urlencode

from twilio.twiml.voice_response import VoiceResponse

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.taskrouter_domain import (
    CORRELATION_ATTRIBUTE,
    VoicemailRecord,
    VoicemailRedirectResult,
)
from app.services.infrastructure.twilio_service import (
    TwilioService,
    TwilioServiceError,
    twilio_service,
)
from app.services.notification_service import NotificationService, notification_service
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

VOICEMAIL_PATH = "/api/taskrouter/voicemail"
VOICEMAIL_COMPLETE_PATH = "/api/taskrouter/voicemail-complete"
VOICEMAIL_TRANSCRIPTION_PATH = "/api/taskrouter/voicemail-transcription"

GREETING = (
    "Sorry, all of our representatives are currently unavailable. "
    "Please leave a message after the beep, and we will get back to you as soon as possible. "
    "When you are finished, press pound or simply hang up."
)
NO_MESSAGE_TEXT = "We did not receive your message. Goodbye."
THANK_YOU_TEXT = "Thank you for your message. Goodbye."
APOLOGY_TEXT = "An error occurred. Please try again later."

RECORD_FINISH_KEY = "#"
RECORD_TIMEOUT_SECONDS = 10
RECORD_MAX_LENGTH_SECONDS = 120

MARKER_PREFIX = "voicemail:redirected:"


class MarkerStore(Protocol):
    async def exists(self, key: str) -> bool: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...


def _callback_url(base_url: str, path: str, task_sid: str, workspace_sid: str) -> str:
    query = urlencode({"taskSid": task_sid, "workspaceSid": workspace_sid})
    return f"{base_url.rstrip('/')}{path}?{query}"


def build_voicemail_url(base_url: str, task_sid: str, workspace_sid: str) -> str:
    """URL of the record-and-transcribe flow for one task."""
    return _callback_url(base_url, VOICEMAIL_PATH, task_sid, workspace_sid)


def build_voicemail_twiml(base_url: str, task_sid: str, workspace_sid: str) -> str:
    """Greeting, then record with transcription, then a no-message fallback."""
    response = VoiceResponse()
    response.say(GREETING, voice="alice")
    response.record(
        action=_callback_url(base_url, VOICEMAIL_COMPLETE_PATH, task_sid, workspace_sid),
        finish_on_key=RECORD_FINISH_KEY,
        play_beep=True,
        transcribe=True,
        transcribe_callback=f"{base_url.rstrip('/')}{VOICEMAIL_TRANSCRIPTION_PATH}",
        max_length=RECORD_MAX_LENGTH_SECONDS,
        timeout=RECORD_TIMEOUT_SECONDS,
    )
    response.say(NO_MESSAGE_TEXT, voice="alice")
    response.hangup()
    return str(response)


def build_fallback_twiml() -> str:
    """Minimal apology-and-hangup script used when anything goes wrong."""
    response = VoiceResponse()
    response.say(APOLOGY_TEXT)
    response.hangup()
    return str(response)


def build_recording_complete_twiml(recording_sid: str | None, duration_seconds: int) -> str:
    response = VoiceResponse()
    if recording_sid and duration_seconds > 0:
        response.say(THANK_YOU_TEXT, voice="Polly.Matthew")
    response.hangup()
    return str(response)


class VoicemailCoordinator:
    """Redirects unanswered calls to voicemail and retires their tasks."""

    def __init__(
        self,
        twilio: TwilioService,
        notifier: NotificationService,
        marker_store: MarkerStore | None = None,
    ):
        self._twilio = twilio
        self._notifier = notifier
        self._markers = marker_store

    async def redirect_to_voicemail(
        self,
        task_sid: str,
        task_attributes: dict[str, Any],
        workspace_sid: str | None,
        base_url: str,
    ) -> VoicemailRedirectResult:
        """
        Redirect the task's call to the voicemail flow and cancel the task.

        Never raises for upstream failures; the outcome is reported in the
        returned result and the logs.
        """
        call_sid = task_attributes.get(CORRELATION_ATTRIBUTE)
        result = VoicemailRedirectResult(task_sid=task_sid, call_sid=call_sid)

        if not call_sid:
            logger.error("No call_sid in task attributes - cannot redirect", task_sid=task_sid)
            result.aborted_reason = "missing_call_sid"
            return result

        workspace_sid = workspace_sid or settings.TASKROUTER_WORKSPACE_SID
        if not workspace_sid:
            logger.error("No workspace SID available - cannot redirect", task_sid=task_sid)
            result.aborted_reason = "missing_workspace_sid"
            return result

        if not self._twilio.configured:
            logger.warning("Twilio not configured - voicemail redirect skipped", task_sid=task_sid)
            result.aborted_reason = "twilio_not_configured"
            return result

        marker_key = f"{MARKER_PREFIX}{task_sid}"
        if self._markers is not None and await self._markers.exists(marker_key):
            logger.info("Voicemail redirect already done", task_sid=task_sid, call_sid=call_sid)
            result.already_redirected = True
        else:
            voicemail_url = build_voicemail_url(base_url, task_sid, workspace_sid)
            try:
                await self._twilio.redirect_call(call_sid, voicemail_url)
                result.redirected = True
            except TwilioServiceError as e:
                logger.error(
                    "Voicemail redirect failed",
                    task_sid=task_sid,
                    call_sid=call_sid,
                    error=str(e),
                    status_code=e.status_code,
                )

            if result.redirected and self._markers is not None:
                await self._markers.set_with_ttl(
                    marker_key, call_sid, settings.VOICEMAIL_MARKER_TTL_SECONDS
                )

        try:
            result.task_canceled = await self._twilio.cancel_task(
                workspace_sid, task_sid, settings.VOICEMAIL_CANCEL_REASON
            )
        except TwilioServiceError as e:
            log = logger.info if (result.redirected or result.already_redirected) else logger.error
            log(
                "Voicemail task cancel failed",
                task_sid=task_sid,
                error=str(e),
                status_code=e.status_code,
            )

        logger.info("Voicemail fallback processed", **result.model_dump())
        return result

    async def handle_transcription(self, record: VoicemailRecord) -> bool:
        """Dispatch the voicemail notification; incomplete transcriptions are annotated."""
        logger.info(
            "Voicemail transcription received",
            caller=record.caller,
            transcription_status=record.transcription_status,
            duration_seconds=record.duration_seconds,
        )
        return await self._notifier.send_voicemail_notification(record)


# Singleton instance for application use
voicemail_coordinator = VoicemailCoordinator(
    twilio_service,
    notification_service,
    marker_store=fast_redis if fast_redis.configured else None,
)

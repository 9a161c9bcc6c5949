"""
Voicemail notification dispatch via the Resend email API.

Notifications are optional: when the provider is not configured the
dispatch is skipped, and provider errors are logged, never raised.
"""

from html import escape

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.taskrouter_domain import VoicemailRecord

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 10  # seconds

INCOMPLETE_TRANSCRIPTION_NOTE = "may be incomplete"


def build_voicemail_email(record: VoicemailRecord) -> dict[str, str]:
    """Build subject and HTML body for a voicemail notification."""
    caller = escape(record.caller)

    parts = ["<h2>New Voicemail Received</h2>", f"<p><strong>From:</strong> {caller}</p>"]

    if record.duration_seconds:
        parts.append(
            f"<p><strong>Duration:</strong> {escape(record.duration_seconds)} seconds</p>"
        )

    if record.recording_link:
        parts.append(
            f'<p><strong>Recording:</strong> <a href="{escape(record.recording_link)}">'
            "Listen to Recording</a></p>"
        )

    if not record.transcription_complete:
        status = escape(record.transcription_status or "unknown")
        parts.append(
            f"<p><strong>Transcription Status:</strong> {status} "
            f"({INCOMPLETE_TRANSCRIPTION_NOTE})</p>"
        )

    transcription = escape(record.transcription_text or "") or "(Transcription unavailable)"
    parts.append("<p><strong>Transcription:</strong></p>")
    parts.append(
        '<blockquote style="background: #f5f5f5; padding: 12px; '
        f'border-left: 4px solid #ccc; margin: 8px 0;">{transcription}</blockquote>'
    )

    return {
        "subject": f"New Voicemail from {record.caller}",
        "html": "\n".join(parts),
    }


class NotificationService:
    """Sends voicemail notifications to the configured inbox."""

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(settings.RESEND_API_KEY and settings.VOICEMAIL_NOTIFICATION_EMAIL)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_voicemail_notification(self, record: VoicemailRecord) -> bool:
        """
        Email a voicemail notification.

        Returns:
            True if the provider accepted the message, False if it was
            skipped or rejected.
        """
        if not self.configured:
            logger.warning("Voicemail notification skipped - provider not configured")
            return False

        email = build_voicemail_email(record)
        payload = {
            "from": settings.VOICEMAIL_SENDER,
            "to": [settings.VOICEMAIL_NOTIFICATION_EMAIL],
            "subject": email["subject"],
            "html": email["html"],
        }
        headers = {
            "Authorization": f"Bearer {settings.RESEND_API_KEY}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._get_client().post(RESEND_API_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Voicemail notification request failed", error=str(e))
            return False

        if response.is_success:
            logger.info(
                "Voicemail notification sent",
                caller=record.caller,
                transcription_status=record.transcription_status,
            )
            return True

        logger.error(
            "Voicemail notification rejected",
            status_code=response.status_code,
            body=response.text[:200],
        )
        return False


# Singleton instance for application use
notification_service = NotificationService()

"""
Domain models for TaskRouter lifecycle callbacks and the voicemail fallback.

Tasks and reservations are owned by TaskRouter; these models only describe
what a callback told us about them.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventKind(StrEnum):
    """Lifecycle event kinds this service classifies."""

    TASK_CREATED = "task.created"
    TASK_QUEUE_ENTERED = "task-queue.entered"
    RESERVATION_CREATED = "reservation.created"
    RESERVATION_ACCEPTED = "reservation.accepted"
    RESERVATION_REJECTED = "reservation.rejected"
    RESERVATION_TIMEOUT = "reservation.timeout"
    TASK_CANCELED = "task.canceled"


class AssignmentStatus(StrEnum):
    PENDING = "pending"
    RESERVED = "reserved"
    ACCEPTED = "accepted"
    CANCELED = "canceled"
    COMPLETED = "completed"


# Task attribute carrying the call SID; used as the correlation key for one call
CORRELATION_ATTRIBUTE = "call_sid"


class TaskRouterEvent(BaseModel):
    """Tagged value produced by classifying one lifecycle callback."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    kind: EventKind | None = None
    task_sid: str | None = None
    task_queue_name: str | None = None
    task_queue_sid: str | None = None
    worker_sid: str | None = None
    reservation_sid: str | None = None
    workspace_sid: str | None = None
    task_attributes: dict[str, Any] = Field(default_factory=dict)
    task_canceled_reason: str | None = None

    @property
    def correlation_id(self) -> str | None:
        value = self.task_attributes.get(CORRELATION_ATTRIBUTE)
        return str(value) if value else None

    def log_fields(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "task_sid": self.task_sid,
            "task_queue_name": self.task_queue_name,
            "task_queue_sid": self.task_queue_sid,
            "worker_sid": self.worker_sid,
            "reservation_sid": self.reservation_sid,
            "call_sid": self.correlation_id,
        }


class VoicemailRedirectResult(BaseModel):
    """Outcome of one voicemail redirect attempt."""

    task_sid: str
    call_sid: str | None = None
    redirected: bool = False
    already_redirected: bool = False
    task_canceled: bool = False
    aborted_reason: str | None = None


class VoicemailRecord(BaseModel):
    """Transcribed voicemail, as delivered by the transcription callback."""

    caller: str = "Unknown"
    recording_url: str | None = None
    transcription_text: str | None = None
    duration_seconds: str | None = None
    transcription_status: str | None = None

    @property
    def transcription_complete(self) -> bool:
        return self.transcription_status == "completed"

    @property
    def recording_link(self) -> str | None:
        return f"{self.recording_url}.mp3" if self.recording_url else None

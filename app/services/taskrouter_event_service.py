"""
TaskRouter lifecycle event handler.

Two steps per callback:
    1. classify_event() turns the raw form fields into a TaskRouterEvent
       (or raises TaskEventValidationError for malformed payloads)
    2. TaskEventHandler.handle() looks the event kind up in a handler table

Only a task entering the voicemail queue triggers side effects; every other
kind is recorded for observability and leaves routing state alone.
"""

import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

import structlog

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.taskrouter_domain import (
    EventKind,
    TaskRouterEvent,
    VoicemailRedirectResult,
)
from app.services.voicemail_service import VoicemailCoordinator, voicemail_coordinator

logger = get_logger(__name__)

RESERVATION_KINDS = {
    EventKind.RESERVATION_CREATED,
    EventKind.RESERVATION_ACCEPTED,
    EventKind.RESERVATION_REJECTED,
    EventKind.RESERVATION_TIMEOUT,
}


class TaskEventValidationError(Exception):
    """Lifecycle callback is missing or has a malformed required field."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


@dataclass
class EventOutcome:
    """What the handler did with one event."""

    event_type: str
    action: str
    voicemail: VoicemailRedirectResult | None = None


def _field(fields: Mapping[str, str], name: str) -> str | None:
    value = fields.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_task_attributes(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        attributes = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TaskEventValidationError(
            f"TaskAttributes is not valid JSON: {e.msg}", field="TaskAttributes"
        ) from e
    if not isinstance(attributes, dict):
        raise TaskEventValidationError("TaskAttributes must be a JSON object", field="TaskAttributes")
    return attributes


def classify_event(fields: Mapping[str, str]) -> TaskRouterEvent:
    """
    Classify a form-encoded TaskRouter callback.

    Unknown event types are accepted with kind=None so they can be recorded.

    Raises:
        TaskEventValidationError: required field missing or malformed
    """
    event_type = _field(fields, "EventType")
    if not event_type:
        raise TaskEventValidationError("EventType is required", field="EventType")

    try:
        kind = EventKind(event_type)
    except ValueError:
        kind = None

    task_sid = _field(fields, "TaskSid")
    reservation_sid = _field(fields, "ReservationSid")

    if kind is not None and not task_sid:
        raise TaskEventValidationError(f"TaskSid is required for {event_type}", field="TaskSid")
    if kind in RESERVATION_KINDS and not reservation_sid:
        raise TaskEventValidationError(
            f"ReservationSid is required for {event_type}", field="ReservationSid"
        )

    return TaskRouterEvent(
        event_type=event_type,
        kind=kind,
        task_sid=task_sid,
        task_queue_name=_field(fields, "TaskQueueName"),
        task_queue_sid=_field(fields, "TaskQueueSid"),
        worker_sid=_field(fields, "WorkerSid"),
        reservation_sid=reservation_sid,
        workspace_sid=_field(fields, "WorkspaceSid"),
        task_attributes=_parse_task_attributes(fields.get("TaskAttributes")),
        task_canceled_reason=_field(fields, "TaskCanceledReason"),
    )


Handler = Callable[[TaskRouterEvent, str], Awaitable[EventOutcome]]


class TaskEventHandler:
    """Dispatches classified lifecycle events by kind."""

    def __init__(self, coordinator: VoicemailCoordinator, voicemail_queue_name: str | None = None):
        self._coordinator = coordinator
        self._voicemail_queue = voicemail_queue_name or settings.VOICEMAIL_QUEUE_NAME
        self._handlers: dict[EventKind, Handler] = {
            EventKind.TASK_CREATED: self._record,
            EventKind.TASK_QUEUE_ENTERED: self._on_queue_entered,
            EventKind.RESERVATION_CREATED: self._record,
            EventKind.RESERVATION_ACCEPTED: self._record,
            EventKind.RESERVATION_REJECTED: self._record,
            EventKind.RESERVATION_TIMEOUT: self._record,
            EventKind.TASK_CANCELED: self._on_task_canceled,
        }

    async def handle(self, event: TaskRouterEvent, base_url: str) -> EventOutcome:
        """
        Handle one event.

        Args:
            event: classified callback
            base_url: public base URL of the request that delivered it
        """
        with structlog.contextvars.bound_contextvars(call_sid=event.correlation_id):
            logger.info("TaskRouter event received", **event.log_fields())

            handler = self._handlers.get(event.kind) if event.kind else None
            if handler is None:
                logger.info("Unhandled TaskRouter event type", event_type=event.event_type)
                return EventOutcome(event_type=event.event_type, action="ignored")

            return await handler(event, base_url)

    async def _record(self, event: TaskRouterEvent, base_url: str) -> EventOutcome:
        return EventOutcome(event_type=event.event_type, action="recorded")

    async def _on_task_canceled(self, event: TaskRouterEvent, base_url: str) -> EventOutcome:
        logger.info(
            "Task canceled",
            task_sid=event.task_sid,
            reason=event.task_canceled_reason or "unknown",
        )
        return EventOutcome(event_type=event.event_type, action="recorded")

    async def _on_queue_entered(self, event: TaskRouterEvent, base_url: str) -> EventOutcome:
        if event.task_queue_name != self._voicemail_queue:
            return EventOutcome(event_type=event.event_type, action="recorded")

        logger.info("Task entered voicemail queue", task_sid=event.task_sid)
        result = await self._coordinator.redirect_to_voicemail(
            event.task_sid,
            event.task_attributes,
            event.workspace_sid,
            base_url,
        )
        return EventOutcome(event_type=event.event_type, action="voicemail", voicemail=result)


# Singleton instance for application use
task_event_handler = TaskEventHandler(voicemail_coordinator)

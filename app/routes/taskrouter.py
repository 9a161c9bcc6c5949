"""
TaskRouter and voicemail webhooks.

Twilio treats anything but a well-formed 2xx as a failed delivery and sends the
same callback again, so every route here answers on all paths:
    /events                   204, 400 for malformed payloads, 500 otherwise
    /voicemail                always 200 TwiML (apology script on error)
    /voicemail-complete       always 200 TwiML
    /voicemail-transcription  plain text, 200 or 500
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from app.auth.twilio_signature import verify_twilio_request
from app.infrastructure.observability.logging import get_logger
from app.middleware.request_context import public_base_url
from app.models.domain.taskrouter_domain import VoicemailRecord
from app.services.taskrouter_event_service import (
    TaskEventHandler,
    TaskEventValidationError,
    classify_event,
    task_event_handler,
)
from app.services.voicemail_service import (
    VoicemailCoordinator,
    build_fallback_twiml,
    build_recording_complete_twiml,
    build_voicemail_twiml,
    voicemail_coordinator,
)

router = APIRouter(
    prefix="/api/taskrouter",
    tags=["taskrouter"],
    dependencies=[Depends(verify_twilio_request)],
)
logger = get_logger(__name__)

TWIML_MEDIA_TYPE = "text/xml"


def get_task_event_handler() -> TaskEventHandler:
    return task_event_handler


def get_voicemail_coordinator() -> VoicemailCoordinator:
    return voicemail_coordinator


def _base_url(request: Request) -> str:
    return getattr(request.state, "public_base_url", None) or public_base_url(request)


async def _form_fields(request: Request) -> dict[str, str]:
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


def _twiml(body: str) -> Response:
    return Response(content=body, media_type=TWIML_MEDIA_TYPE, status_code=status.HTTP_200_OK)


@router.post("/events", status_code=status.HTTP_204_NO_CONTENT)
async def taskrouter_events(
    request: Request,
    handler: TaskEventHandler = Depends(get_task_event_handler),
):
    """Lifecycle callback for every task and reservation transition."""
    try:
        fields = await _form_fields(request)
        event = classify_event(fields)
    except TaskEventValidationError as e:
        logger.warning("Rejected malformed TaskRouter event", field=e.field, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_error", "field": e.field, "detail": str(e)},
        )

    try:
        outcome = await handler.handle(event, _base_url(request))
    except Exception as e:
        logger.exception(
            "TaskRouter event handling failed",
            event_type=event.event_type,
            task_sid=event.task_sid,
            error_type=type(e).__name__,
        )
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.debug("TaskRouter event handled", event_type=outcome.event_type, action=outcome.action)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.api_route("/voicemail", methods=["GET", "POST"])
async def voicemail_twiml(request: Request):
    """Greeting plus record-and-transcribe flow the live call is redirected to."""
    task_sid = request.query_params.get("taskSid", "")
    workspace_sid = request.query_params.get("workspaceSid", "")
    try:
        twiml = build_voicemail_twiml(_base_url(request), task_sid, workspace_sid)
        logger.info("Voicemail flow served", task_sid=task_sid, workspace_sid=workspace_sid)
        return _twiml(twiml)
    except Exception as e:
        logger.error("Voicemail flow failed", task_sid=task_sid, error=str(e))
        return _twiml(build_fallback_twiml())


@router.post("/voicemail-complete")
async def voicemail_complete(request: Request):
    """Record action: thank the caller if a message was left, then hang up."""
    try:
        fields = await _form_fields(request)
        recording_sid = fields.get("RecordingSid") or None
        try:
            duration = int(fields.get("RecordingDuration") or 0)
        except ValueError:
            duration = 0

        logger.info(
            "Voicemail recording complete",
            task_sid=request.query_params.get("taskSid"),
            recording_sid=recording_sid,
            duration_seconds=duration,
        )
        return _twiml(build_recording_complete_twiml(recording_sid, duration))
    except Exception as e:
        logger.error("Voicemail complete handler failed", error=str(e))
        return _twiml(build_recording_complete_twiml(None, 0))


@router.post("/voicemail-transcription", response_class=PlainTextResponse)
async def voicemail_transcription(
    request: Request,
    coordinator: VoicemailCoordinator = Depends(get_voicemail_coordinator),
):
    """Transcription callback: dispatch the voicemail notification."""
    try:
        fields = await _form_fields(request)
        record = VoicemailRecord(
            caller=fields.get("From") or "Unknown",
            recording_url=fields.get("RecordingUrl") or None,
            transcription_text=fields.get("TranscriptionText") or None,
            duration_seconds=fields.get("RecordingDuration") or None,
            transcription_status=fields.get("TranscriptionStatus") or None,
        )
        await coordinator.handle_transcription(record)
        return PlainTextResponse("OK", status_code=status.HTTP_200_OK)
    except Exception as e:
        logger.exception("Voicemail transcription handler failed", error_type=type(e).__name__)
        return PlainTextResponse("Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

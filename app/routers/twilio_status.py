# app/routers/twilio_status.py
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.webhooks import (
    CallRecordingStatusCallback,
    CallStatusCallback,
    ConferenceStatusCallback,
    parse_callback,
)
from app.services.call_status_service import update_call_status
from app.services.recording_service import store_call_recording
from app.services.twilio_client import carrier_form, verify_twilio_signature
from app.services.webhook_service import handle_conference_event

router = APIRouter(
    prefix="/twilio",
    tags=["twilio-status"],
    dependencies=[Depends(verify_twilio_signature)],
)

EMPTY_TWIML = "<Response></Response>"


@router.post("/status", response_class=Response)
def twilio_status_webhook(
    form: Dict[str, Any] = Depends(carrier_form),
    db: Session = Depends(get_db),
):
    """
    Twilio call status callback webhook.

    Twilio will POST here with fields like:
      - CallSid: Twilio's call ID
      - CallStatus: queued | ringing | in-progress | completed | busy | failed | no-answer | canceled
      - CallDuration: seconds, on terminal statuses
    """
    payload = parse_callback(CallStatusCallback, form)
    update_call_status(
        db=db,
        provider_call_id=payload.CallSid,
        call_status=payload.CallStatus,
        duration=payload.CallDuration,
        from_number=payload.From,
        to_number=payload.To,
    )

    # Just return a minimal TwiML response with the correct media type.
    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/conference-status", response_class=Response)
def twilio_conference_status_webhook(
    form: Dict[str, Any] = Depends(carrier_form),
    db: Session = Depends(get_db),
):
    """
    Conference status callback (start, end, join, leave).

    Duplicates and events for sessions we have not stored yet are still
    acknowledged with 200 so the carrier stops retrying.
    """
    payload = parse_callback(ConferenceStatusCallback, form)
    handle_conference_event(db, payload)
    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/recording-status")
def twilio_recording_status_webhook(
    form: Dict[str, Any] = Depends(carrier_form),
    db: Session = Depends(get_db),
):
    """Live-call recording callback; only `completed` recordings are stored."""
    payload = parse_callback(CallRecordingStatusCallback, form)
    recording = store_call_recording(db, payload)
    return {
        "success": True,
        "recording_id": recording.id if recording is not None else None,
    }

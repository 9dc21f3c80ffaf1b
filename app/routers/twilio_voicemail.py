# app/routers/twilio_voicemail.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session
from twilio.twiml.voice_response import VoiceResponse

from app.db.session import get_db
from app.schemas.webhooks import (
    RecordingCompleteCallback,
    RecordingStatusCallback,
    TranscriptionCallback,
    parse_callback,
)
from app.services import twiml
from app.services.twilio_client import carrier_form, verify_twilio_signature
from app.services.voicemail_service import handle_recording_status, store_voicemail

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/twilio/voicemail",
    tags=["twilio-voicemail"],
    dependencies=[Depends(verify_twilio_signature)],
)


@router.post("/recording")
def voicemail_recording_status(form: Dict[str, Any] = Depends(carrier_form)):
    handle_recording_status(parse_callback(RecordingStatusCallback, form))
    return {"success": True}


@router.post("/transcription")
def voicemail_transcription(
    extension_id: Optional[int] = None,
    form: Dict[str, Any] = Depends(carrier_form),
    db: Session = Depends(get_db),
):
    payload = parse_callback(TranscriptionCallback, form)
    voicemail = store_voicemail(db, payload, extension_id=extension_id)
    return {
        "success": True,
        "voicemail_id": voicemail.id if voicemail is not None else None,
    }


@router.post("/complete", response_class=Response)
def voicemail_complete(form: Dict[str, Any] = Depends(carrier_form)):
    """<Record> action: the caller hung up or finished the message."""
    payload = parse_callback(RecordingCompleteCallback, form)
    logger.info("Recording complete for call %s: %s", payload.CallSid, payload.RecordingUrl)

    vr = VoiceResponse()
    twiml.say(vr, "Thank you for your message. Goodbye.")
    vr.hangup()
    return Response(content=str(vr), media_type="application/xml")

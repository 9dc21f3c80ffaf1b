# app/routers/recordings.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.recording import CallRecording
from app.services.recording_service import list_recordings, start_call_recording
from app.services.twilio_client import TwilioClient, get_twilio_client

router = APIRouter(prefix="/recordings", tags=["recordings"])


class StartRecordingRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    call_sid: str
    consent_given: bool = False


def serialize_recording(recording: CallRecording) -> Dict[str, Any]:
    return {
        "id": recording.id,
        "callLogId": recording.call_log_id,
        "recordingSid": recording.recording_sid,
        "callSid": recording.provider_call_id,
        "recordingUrl": recording.recording_url,
        "duration": recording.duration,
        "consentGiven": recording.consent_given,
        "createdAt": recording.created_at.isoformat(),
    }


@router.put("")
def start_recording_endpoint(
    payload: StartRecordingRequest,
    db: Session = Depends(get_db),
    twilio_client: TwilioClient = Depends(get_twilio_client),
) -> Dict[str, Any]:
    recording_sid = start_call_recording(
        db,
        twilio_client,
        call_sid=payload.call_sid,
        consent_given=payload.consent_given,
    )
    return {"success": True, "recordingSid": recording_sid, "message": "Recording started"}


@router.get("")
def list_recordings_endpoint(
    call_sid: Optional[str] = Query(default=None, alias="callSid"),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    recordings = list_recordings(db, call_sid=call_sid, limit=limit)
    return {"success": True, "data": [serialize_recording(r) for r in recordings]}

# app/services/recording_service.py
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import ValidationError
from app.models.call import CallDirection, PhoneCallLog
from app.models.recording import CallRecording
from app.schemas.webhooks import CallRecordingStatusCallback
from app.services.twilio_client import TwilioClient
from app.services.voicemail_service import recording_media_url

logger = logging.getLogger(__name__)

RECORDING_STATUS_PATH = "/twilio/recording-status"


def start_call_recording(
    db: Session,
    carrier: TwilioClient,
    *,
    call_sid: str,
    consent_given: bool,
) -> str:
    """
    Start recording a live call once the other party agreed to it.

    Nothing reaches the carrier without consent. The completed recording
    arrives later on the recording status callback.
    """
    if not call_sid:
        raise ValidationError("callSid is required")
    if not consent_given:
        raise ValidationError("Recording consent required")

    status_callback = get_settings().callback_url(RECORDING_STATUS_PATH)
    if status_callback is None:
        logger.warning("PUBLIC_BASE_URL not set, recording of %s will not be stored", call_sid)

    recording_sid = carrier.start_recording(call_sid, status_callback)

    call_log = db.query(PhoneCallLog).filter_by(provider_call_id=call_sid).first()
    if call_log is not None:
        call_log.recording_consent = True
        db.commit()

    logger.info("Recording %s started for call %s", recording_sid, call_sid)
    return recording_sid


def store_call_recording(db: Session, payload: CallRecordingStatusCallback) -> Optional[CallRecording]:
    """
    Persist a completed recording against the call log for its CallSid.

    At most one row per RecordingSid; a redelivered callback returns the
    stored row unchanged.
    """
    if payload.RecordingStatus != "completed" or not payload.RecordingUrl:
        logger.info(
            "Recording %s for call %s is %s, nothing to store",
            payload.RecordingSid,
            payload.CallSid,
            payload.RecordingStatus,
        )
        return None

    existing = db.query(CallRecording).filter_by(recording_sid=payload.RecordingSid).first()
    if existing is not None:
        return existing

    media_url = recording_media_url(payload.RecordingUrl)
    duration = payload.RecordingDuration or 0

    call_log = db.query(PhoneCallLog).filter_by(provider_call_id=payload.CallSid).first()
    if call_log is None:
        call_log = PhoneCallLog(
            provider_call_id=payload.CallSid,
            direction=CallDirection.INBOUND.value,
            from_number=payload.From,
            status="completed",
        )
        db.add(call_log)

    call_log.recording_url = media_url
    call_log.recording_duration = duration
    call_log.recording_consent = True
    db.flush()

    recording = CallRecording(
        call_log_id=call_log.id,
        recording_sid=payload.RecordingSid,
        provider_call_id=payload.CallSid,
        recording_url=media_url,
        duration=duration,
        consent_given=True,
    )
    db.add(recording)
    try:
        db.commit()
    except IntegrityError:
        # concurrent delivery of the same recording won
        db.rollback()
        return db.query(CallRecording).filter_by(recording_sid=payload.RecordingSid).one()

    db.refresh(recording)
    logger.info("Recording %s stored for call %s", recording.recording_sid, payload.CallSid)
    return recording


def list_recordings(
    db: Session,
    call_sid: Optional[str] = None,
    limit: int = 50,
) -> List[CallRecording]:
    query = db.query(CallRecording)
    if call_sid:
        query = query.filter(CallRecording.provider_call_id == call_sid)
    return query.order_by(CallRecording.created_at.desc(), CallRecording.id.desc()).limit(limit).all()

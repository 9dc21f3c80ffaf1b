# app/services/voicemail_service.py
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models.call import CallDirection, PhoneCallLog
from app.models.voicemail import Voicemail
from app.schemas.webhooks import RecordingStatusCallback, TranscriptionCallback

logger = logging.getLogger(__name__)


def recording_media_url(recording_url: str) -> str:
    """Twilio serves the audio itself under the recording URL plus an extension."""
    if recording_url.endswith(".mp3"):
        return recording_url
    return f"{recording_url}.mp3"


def handle_recording_status(payload: RecordingStatusCallback) -> None:
    # The recording is persisted once the transcription arrives
    logger.info(
        "Recording %s for call %s (%s s): %s",
        payload.RecordingStatus,
        payload.CallSid,
        payload.RecordingDuration,
        payload.RecordingUrl,
    )


def store_voicemail(
    db: Session,
    payload: TranscriptionCallback,
    extension_id: Optional[int] = None,
) -> Optional[Voicemail]:
    """
    Persist a finished voicemail.

    Only a completed transcription with a recording URL is stored. The call
    log for the CallSid is created or marked as voicemail, and at most one
    Voicemail row exists per CallSid, so a redelivered callback is a no-op.
    """
    if payload.TranscriptionStatus != "completed" or not payload.RecordingUrl:
        logger.info(
            "Skipping transcription %s for call %s",
            payload.TranscriptionStatus,
            payload.CallSid,
        )
        return None

    media_url = recording_media_url(payload.RecordingUrl)
    duration = payload.RecordingDuration or 0

    call_log = None
    if payload.CallSid:
        call_log = db.query(PhoneCallLog).filter_by(provider_call_id=payload.CallSid).first()
    if call_log is None:
        call_log = PhoneCallLog(
            provider_call_id=payload.CallSid,
            direction=CallDirection.INBOUND.value,
            from_number=payload.From,
            to_number=payload.To,
            status="completed",
            extension_id=extension_id,
        )
        db.add(call_log)
    elif extension_id is not None and call_log.extension_id is None:
        call_log.extension_id = extension_id

    call_log.is_voicemail = True
    call_log.voicemail_url = media_url
    call_log.voicemail_duration = duration
    call_log.voicemail_transcription = payload.TranscriptionText
    db.flush()

    voicemail = None
    if payload.CallSid:
        voicemail = db.query(Voicemail).filter_by(provider_call_id=payload.CallSid).first()
    if voicemail is None:
        voicemail = Voicemail(
            call_log_id=call_log.id,
            extension_id=extension_id if extension_id is not None else call_log.extension_id,
            provider_call_id=payload.CallSid,
            from_number=payload.From,
            recording_url=media_url,
            duration=duration,
            transcription=payload.TranscriptionText,
        )
        db.add(voicemail)
    else:
        voicemail.transcription = payload.TranscriptionText

    db.commit()
    db.refresh(voicemail)
    logger.info("Voicemail stored for call %s (extension %s)", payload.CallSid, voicemail.extension_id)
    return voicemail

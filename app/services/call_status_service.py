# app/services/call_status_service.py
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models.call import TERMINAL_CALL_STATUSES, CallDirection, PhoneCallLog

logger = logging.getLogger(__name__)


def log_inbound_call(
    db: Session,
    *,
    call_sid: Optional[str],
    tenant_id: Optional[int],
    extension_id: Optional[int],
    from_number: Optional[str],
    to_number: Optional[str],
) -> PhoneCallLog:
    """
    Record an inbound leg routed to an extension.

    A second IVR pass for the same CallSid re-targets the existing row
    instead of adding another.
    """
    call_log = None
    if call_sid:
        call_log = db.query(PhoneCallLog).filter_by(provider_call_id=call_sid).first()

    if call_log is None:
        call_log = PhoneCallLog(
            provider_call_id=call_sid,
            direction=CallDirection.INBOUND.value,
            from_number=from_number,
            to_number=to_number,
            status="ringing",
        )
        db.add(call_log)

    call_log.tenant_id = tenant_id
    call_log.extension_id = extension_id

    db.commit()
    db.refresh(call_log)
    return call_log


def update_call_status(
    db: Session,
    provider_call_id: str,
    call_status: str,
    duration: Optional[int] = None,
    from_number: Optional[str] = None,
    to_number: Optional[str] = None,
) -> Optional[PhoneCallLog]:
    """
    Apply a Twilio call status callback to the matching call log.

    - provider_call_id is Twilio's CallSid
    - call_status is Twilio's CallStatus ("queued", "ringing", "in-progress",
      "completed", "busy", "failed", "no-answer", "canceled")

    Once a log holds a terminal status a late "ringing" or "in-progress"
    delivery is ignored; calls we never logged are recorded as outbound.
    """
    call_log = db.query(PhoneCallLog).filter_by(provider_call_id=provider_call_id).first()
    if call_log is None:
        call_log = PhoneCallLog(
            provider_call_id=provider_call_id,
            direction=CallDirection.OUTBOUND.value,
            from_number=from_number,
            to_number=to_number,
            status=call_status,
        )
        db.add(call_log)
    elif call_log.status in TERMINAL_CALL_STATUSES:
        logger.info(
            "Ignoring %s for call %s already %s",
            call_status,
            provider_call_id,
            call_log.status,
        )
        return call_log
    else:
        call_log.status = call_status

    if duration is not None and call_status in TERMINAL_CALL_STATUSES:
        call_log.duration = duration

    db.commit()
    db.refresh(call_log)
    return call_log

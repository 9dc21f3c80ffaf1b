# app/services/transfer_service.py
import logging
import time
from dataclasses import dataclass
from typing import Optional

from app.config import get_settings
from app.errors import UnsupportedTarget, ValidationError
from app.services import twiml
from app.services.phone_numbers import normalize_phone_number
from app.services.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

TRANSFER_TYPES = ("warm", "cold")


@dataclass
class TransferResult:
    type: str
    transferred_to: str
    conference_name: Optional[str] = None
    target_call_sid: Optional[str] = None


def transfer_call(
    carrier: TwilioClient,
    *,
    call_sid: str,
    transfer_to: str,
    transfer_type: str = "warm",
) -> TransferResult:
    """
    Hand an active call to the operator/assistant line.

    warm: the caller waits in a fresh conference and the target is dialed
    into it, so both are briefly bridged.
    cold: the caller's leg is redirected straight to the target.

    Only the allow-listed number is accepted; everything is validated
    before the carrier is touched.
    """
    if not call_sid or not transfer_to:
        raise ValidationError("callSid and transferTo are required")
    if transfer_type not in TRANSFER_TYPES:
        raise ValidationError(f"transferType must be one of: {', '.join(TRANSFER_TYPES)}")

    settings = get_settings()
    allowed = normalize_phone_number(settings.TRANSFER_ALLOWED_NUMBER)
    target = normalize_phone_number(transfer_to)
    if target != allowed:
        raise UnsupportedTarget(
            "Only transfers to the operator line are currently supported",
            {"allowed_number": allowed},
        )

    if transfer_type == "warm":
        conference_name = f"transfer-{int(time.time() * 1000)}"
        carrier.update_call_twiml(
            call_sid,
            twiml.conference_twiml(
                conference_name,
                start_on_enter=True,
                end_on_exit=True,
                announcement="Please hold while we connect you to our assistant.",
            ),
        )
        target_call_sid = carrier.create_outbound_call(
            to_number=target,
            twiml=twiml.conference_twiml(
                conference_name,
                start_on_enter=False,
                end_on_exit=True,
                announcement="Incoming transfer call.",
            ),
        )
        result = TransferResult(
            type="warm",
            transferred_to=target,
            conference_name=conference_name,
            target_call_sid=target_call_sid,
        )
    else:
        carrier.update_call_twiml(
            call_sid,
            twiml.dial_number_twiml(target, announcement="Transferring you to our assistant."),
        )
        result = TransferResult(type="cold", transferred_to=target)

    logger.info("Call %s transferred (%s) to %s", call_sid, transfer_type, target)
    return result

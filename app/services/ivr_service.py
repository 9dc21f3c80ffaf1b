# app/services/ivr_service.py
"""
IVR routing state machine.

    AWAITING_DIGITS → RESOLVING → {CONNECTING, VOICEMAIL, OPERATOR}
                                   CONNECTING → (dial action) → ENDED | VOICEMAIL | OPERATOR | CONNECTING (forward)

The functions here only decide; `app.routers.twilio_voice` renders the
decision as TwiML. Every dead end degrades to the operator.
"""
from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.base import utcnow
from app.models.extension import Extension
from app.models.forwarding_rule import ForwardingCondition
from app.models.internal_call import InternalCall, InternalCallStatus, can_transition
from app.models.presence import UNREACHABLE_STATUSES, PresenceStatus
from app.services.call_status_service import log_inbound_call
from app.services.extension_directory import resolve_extension
from app.services.forwarding_service import active_rules_for, evaluate_forwarding
from app.services.phone_numbers import normalize_phone_number
from app.services.presence_service import get_presence

logger = logging.getLogger(__name__)

OPERATOR_DIGITS = {"0", "00", "000"}
MAX_PROMPT_ATTEMPTS = 2
ANSWERED_DIAL_STATUSES = {"completed", "answered"}


class IvrState(str, enum.Enum):
    AWAITING_DIGITS = "awaiting_digits"
    RESOLVING = "resolving"
    CONNECTING = "connecting"
    VOICEMAIL = "voicemail"
    OPERATOR = "operator"
    ENDED = "ended"


@dataclass
class IvrDecision:
    state: IvrState
    announcements: List[str] = field(default_factory=list)
    attempt: int = 1
    reason: Optional[str] = None
    extension_id: Optional[int] = None
    # exactly one of these is set when CONNECTING
    dial_number: Optional[str] = None
    dial_client: Optional[str] = None
    forwarded: bool = False
    internal_call_id: Optional[int] = None


def begin_call() -> IvrDecision:
    """First hit from the carrier: no digits yet."""
    return IvrDecision(state=IvrState.AWAITING_DIGITS, attempt=1)


def handle_digits(
    db: Session,
    *,
    tenant_id: int,
    digits: str,
    attempt: int = 1,
    from_number: Optional[str] = None,
    to_number: Optional[str] = None,
    call_sid: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IvrDecision:
    digits = (digits or "").strip()

    if digits in OPERATOR_DIGITS:
        return IvrDecision(state=IvrState.OPERATOR, attempt=attempt, reason="operator_requested")

    extension = None
    if digits.isdigit():
        extension = resolve_extension(db, tenant_id, digits)

    if extension is None:
        announcement = f"Extension {digits} is not available." if digits else "I didn't receive any input."
        if attempt >= MAX_PROMPT_ATTEMPTS:
            logger.info("IVR: no extension %r for tenant %s, falling back to operator", digits, tenant_id)
            return IvrDecision(
                state=IvrState.OPERATOR,
                announcements=[announcement],
                attempt=attempt,
                reason="extension_not_found",
            )
        return IvrDecision(
            state=IvrState.AWAITING_DIGITS,
            announcements=[announcement],
            attempt=attempt + 1,
            reason="extension_not_found",
        )

    log_inbound_call(
        db,
        call_sid=call_sid,
        tenant_id=extension.tenant_id,
        extension_id=extension.id,
        from_number=from_number,
        to_number=to_number,
    )
    decision = route_extension(db, extension, caller_number=from_number, now=now)
    decision.attempt = attempt
    return decision


def route_extension(
    db: Session,
    extension: Extension,
    *,
    caller_number: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IvrDecision:
    """
    Decide how to reach a resolved extension.

    A forwarding number always wins over presence; only then does presence
    pick between ringing the user and the unavailable policy.
    """
    settings = get_settings()
    name = extension.display_name

    forward_to = extension.call_forwarding_number
    if not forward_to:
        always = evaluate_forwarding(active_rules_for(db, extension.id), ForwardingCondition.ALWAYS.value)
        if always is not None:
            forward_to = always.number

    if forward_to:
        return IvrDecision(
            state=IvrState.CONNECTING,
            announcements=[f"Connecting you to {name}."],
            extension_id=extension.id,
            dial_number=normalize_phone_number(forward_to),
            forwarded=True,
            reason="forwarding_number",
        )

    if extension.assigned_user_id is None:
        return _unreachable(extension, f"{name} is currently unavailable.", reason="unassigned")

    presence = get_presence(db, extension.assigned_user_id, now=now)
    # no presence row yet means the user never went away
    status = presence.status if presence is not None else PresenceStatus.AVAILABLE.value
    if status in UNREACHABLE_STATUSES:
        return _unreachable(extension, f"{name} is currently unavailable.", reason=f"presence_{status}")

    internal_call = InternalCall(
        tenant_id=extension.tenant_id,
        to_extension_id=extension.id,
        to_user_id=extension.assigned_user_id,
        conference_name=f"ext-{extension.extension_number}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}",
        caller_number=caller_number,
        status=InternalCallStatus.RINGING.value,
    )
    db.add(internal_call)
    db.commit()
    db.refresh(internal_call)

    return IvrDecision(
        state=IvrState.CONNECTING,
        announcements=[f"Connecting you to {name}."],
        extension_id=extension.id,
        dial_client=f"{settings.CLIENT_IDENTITY_PREFIX}{extension.assigned_user_id}",
        internal_call_id=internal_call.id,
        reason=f"presence_{status}",
    )


def handle_dial_outcome(
    db: Session,
    *,
    extension_id: Optional[int],
    dial_status: str,
    dial_duration: Optional[int] = None,
    internal_call_id: Optional[int] = None,
    forwarded: bool = False,
    now: Optional[datetime] = None,
) -> IvrDecision:
    """
    Re-entry point after a CONNECTING dial finished (the <Dial> action).

    An unanswered leg is tried against the extension's forwarding rules
    once, then voicemail or the operator.
    """
    settings = get_settings()
    answered = dial_status in ANSWERED_DIAL_STATUSES

    if internal_call_id is not None:
        _settle_ringing_call(db, internal_call_id, answered, dial_duration, now)

    if answered:
        return IvrDecision(state=IvrState.ENDED, extension_id=extension_id, reason="answered")

    extension = db.get(Extension, extension_id) if extension_id is not None else None
    if extension is None:
        return IvrDecision(state=IvrState.OPERATOR, reason="extension_missing")

    if not forwarded:
        if dial_status == "busy":
            trigger, observed_rings = ForwardingCondition.BUSY.value, None
        else:
            trigger = ForwardingCondition.NO_ANSWER.value
            observed_rings = settings.EXTENSION_DIAL_TIMEOUT // settings.RING_CYCLE_SECONDS
        target = evaluate_forwarding(active_rules_for(db, extension.id), trigger, observed_rings)
        if target is not None:
            logger.info("IVR: extension %s %s, forwarding via rule %s", extension.id, dial_status, target.rule_id)
            return IvrDecision(
                state=IvrState.CONNECTING,
                announcements=["Please hold while we forward your call."],
                extension_id=extension.id,
                dial_number=normalize_phone_number(target.number),
                forwarded=True,
                reason=f"forwarding_rule_{trigger}",
            )

    return _unreachable(extension, f"{extension.display_name} is not answering.", reason=f"dial_{dial_status}")


def _unreachable(extension: Extension, announcement: str, reason: str) -> IvrDecision:
    state = IvrState.VOICEMAIL if extension.voicemail_enabled else IvrState.OPERATOR
    return IvrDecision(
        state=state,
        announcements=[announcement],
        extension_id=extension.id,
        reason=reason,
    )


def _settle_ringing_call(
    db: Session,
    internal_call_id: int,
    answered: bool,
    dial_duration: Optional[int],
    now: Optional[datetime],
) -> None:
    call = db.get(InternalCall, internal_call_id)
    if call is None:
        return

    target = InternalCallStatus.COMPLETED.value if answered else InternalCallStatus.MISSED.value
    if not can_transition(call.status, target):
        return

    now = now or utcnow()
    call.status = target
    call.ended_at = now
    if answered:
        if dial_duration is not None:
            call.duration = dial_duration
        else:
            call.duration = max(0, int((now - call.created_at).total_seconds()))
    else:
        call.duration = 0
    db.commit()

# app/routers/twilio_voice.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session
from twilio.twiml.voice_response import VoiceResponse

from app.config import get_settings
from app.db.session import get_db
from app.errors import ValidationError
from app.schemas.webhooks import DialStatusCallback, InboundCallCallback, parse_callback
from app.services import twiml
from app.services.ivr_service import (
    IvrDecision,
    IvrState,
    begin_call,
    handle_dial_outcome,
    handle_digits,
)
from app.services.phone_numbers import normalize_phone_number
from app.services.twilio_client import carrier_form, verify_twilio_signature

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/twilio",
    tags=["twilio-voice"],
    dependencies=[Depends(verify_twilio_signature)],
)

EXTENSION_DIGITS = 3


def _xml(vr: VoiceResponse) -> Response:
    return Response(content=str(vr), media_type="application/xml")


def _gather(vr: VoiceResponse, prompt: str, *, attempt: int, tenant_id: int) -> None:
    settings = get_settings()
    gather = vr.gather(
        num_digits=EXTENSION_DIGITS,
        timeout=settings.IVR_GATHER_TIMEOUT,
        action=f"/twilio/ivr?attempt={attempt}&tenant_id={tenant_id}",
        method="POST",
    )
    gather.say(prompt, voice=twiml.VOICE)


def render_decision(decision: IvrDecision, tenant_id: int) -> VoiceResponse:
    """Turn an IVR decision into the TwiML the carrier executes next."""
    settings = get_settings()
    vr = VoiceResponse()

    if decision.state == IvrState.AWAITING_DIGITS:
        if not decision.announcements:
            # first pass: welcome, then one silent retry before the operator
            _gather(
                vr,
                f"Thank you for calling {settings.COMPANY_NAME}. "
                "Please enter the extension number of the person you are trying to reach, "
                "or press 0 for the operator.",
                attempt=decision.attempt,
                tenant_id=tenant_id,
            )
            twiml.say(vr, "I didn't receive any input.")
            _gather(
                vr,
                "Please enter an extension number.",
                attempt=decision.attempt + 1,
                tenant_id=tenant_id,
            )
        else:
            for message in decision.announcements:
                twiml.say(vr, message)
            _gather(
                vr,
                "Please enter another extension number, or press 0 for the operator.",
                attempt=decision.attempt,
                tenant_id=tenant_id,
            )
        twiml.add_operator_fallback(vr)
        return vr

    for message in decision.announcements:
        twiml.say(vr, message)

    if decision.state == IvrState.CONNECTING:
        action = f"/twilio/ivr/dial-status?extension_id={decision.extension_id}&tenant_id={tenant_id}"
        if decision.internal_call_id is not None:
            action += f"&internal_call_id={decision.internal_call_id}"
        if decision.forwarded:
            action += "&forwarded=true"
        dial = vr.dial(
            timeout=settings.EXTENSION_DIAL_TIMEOUT,
            action=action,
            method="POST",
            answer_on_bridge=True,
        )
        if decision.dial_client:
            dial.client(decision.dial_client)
        else:
            dial.number(decision.dial_number)
    elif decision.state == IvrState.VOICEMAIL:
        twiml.add_voicemail(vr, extension_id=decision.extension_id)
    elif decision.state == IvrState.OPERATOR:
        twiml.add_operator_fallback(vr)
    else:
        vr.hangup()
    return vr


def _operator_response() -> Response:
    vr = VoiceResponse()
    twiml.add_operator_fallback(
        vr,
        message="We're sorry, we are having trouble routing your call. Connecting you to an operator.",
    )
    return _xml(vr)


@router.api_route("/ivr", methods=["GET", "POST"], response_class=Response)
def twilio_ivr(
    attempt: int = 1,
    tenant_id: Optional[int] = None,
    form: Dict[str, Any] = Depends(carrier_form),
    db: Session = Depends(get_db),
):
    """
    Inbound call entry point and <Gather> action.

    Without `Digits` the caller is greeted; with them the extension is
    resolved and the call connected, sent to voicemail, or to the operator.
    """
    tenant_id = tenant_id or get_settings().DEFAULT_TENANT_ID
    try:
        payload = parse_callback(InboundCallCallback, form)
        if payload.Digits is None:
            decision = begin_call()
        else:
            decision = handle_digits(
                db,
                tenant_id=tenant_id,
                digits=payload.Digits,
                attempt=attempt,
                from_number=payload.From,
                to_number=payload.To,
                call_sid=payload.CallSid,
            )
        logger.info(
            "IVR call %s: %s (%s)",
            payload.CallSid,
            decision.state.value,
            decision.reason,
        )
        return _xml(render_decision(decision, tenant_id))
    except Exception:
        logger.exception("IVR routing failed, sending caller to the operator")
        db.rollback()
        return _operator_response()


@router.post("/ivr/dial-status", response_class=Response)
def twilio_ivr_dial_status(
    extension_id: Optional[int] = None,
    tenant_id: Optional[int] = None,
    internal_call_id: Optional[int] = None,
    forwarded: bool = False,
    form: Dict[str, Any] = Depends(carrier_form),
    db: Session = Depends(get_db),
):
    """<Dial> action after ringing an extension or a forwarding number."""
    tenant_id = tenant_id or get_settings().DEFAULT_TENANT_ID
    try:
        payload = parse_callback(DialStatusCallback, form)
        decision = handle_dial_outcome(
            db,
            extension_id=extension_id,
            dial_status=payload.DialCallStatus,
            dial_duration=payload.DialCallDuration,
            internal_call_id=internal_call_id,
            forwarded=forwarded,
        )
        logger.info(
            "Dial for extension %s ended %s: %s",
            extension_id,
            payload.DialCallStatus,
            decision.state.value,
        )
        return _xml(render_decision(decision, tenant_id))
    except Exception:
        logger.exception("Dial status handling failed, sending caller to the operator")
        db.rollback()
        return _operator_response()


@router.post("/voice", response_class=Response)
def twilio_voice(form: Dict[str, Any] = Depends(carrier_form)):
    """
    Voice URL for calls placed from the browser softphone.

    `To` is `client:<identity>` for another softphone, `conference:<name>`
    to join a named conference, or a phone number.
    """
    settings = get_settings()
    to = (form.get("To") or "").strip()
    vr = VoiceResponse()

    if not to:
        twiml.say(vr, f"Thanks for calling {settings.COMPANY_NAME}. Goodbye.")
        return _xml(vr)

    if to.startswith("conference:"):
        twiml.add_conference(
            vr,
            to[len("conference:"):],
            start_on_enter=True,
            end_on_exit=True,
        )
        return _xml(vr)

    try:
        dial = vr.dial(caller_id=settings.TWILIO_PHONE_NUMBER, answer_on_bridge=True)
        if to.startswith("client:"):
            dial.client(to[len("client:"):])
        else:
            dial.number(normalize_phone_number(to))
    except ValidationError:
        logger.warning("Could not dial %r", to)
        vr = VoiceResponse()
        twiml.say(vr, "An error occurred. Please try again.")
    return _xml(vr)

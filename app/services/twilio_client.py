# app/services/twilio_client.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.request_validator import RequestValidator
from twilio.rest import Client as TwilioSDKClient

from app.config import get_settings
from app.errors import CarrierError

logger = logging.getLogger(__name__)

# Twilio REST error codes with a dedicated meaning for callers
_ERROR_KINDS = {
    21211: CarrierError.INVALID_NUMBER,
    21220: CarrierError.INVALID_NUMBER,
    21217: CarrierError.UNVERIFIED_NUMBER,
    21219: CarrierError.UNVERIFIED_NUMBER,
}


@dataclass
class LiveParticipant:
    call_sid: str
    muted: bool = False
    hold: bool = False


def carrier_error_from(exc: Exception, action: str) -> CarrierError:
    if isinstance(exc, TwilioRestException):
        kind = _ERROR_KINDS.get(exc.code, CarrierError.TRANSIENT)
        return CarrierError(f"Failed to {action}: {exc.msg}", kind=kind, code=exc.code)
    return CarrierError(f"Failed to {action}: {exc}")


class TwilioClient:
    """
    Thin wrapper around the Twilio Python SDK.

    Components receive an instance instead of reaching for a module-level
    client, so tests can swap in a fake with the same methods. Every SDK
    failure surfaces as `CarrierError`.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: Optional[float] = None,
    ):
        http_client = TwilioHttpClient(timeout=timeout)
        self._client = TwilioSDKClient(account_sid, auth_token, http_client=http_client)
        self._from_number = from_number

    @property
    def from_number(self) -> str:
        return self._from_number

    def create_outbound_call(self, to_number: str, twiml: str) -> str:
        """
        Place an outbound call that executes `twiml` once answered and
        return the Call SID.
        """
        try:
            call = self._client.calls.create(
                to=to_number,
                from_=self._from_number,
                twiml=twiml,
            )
        except (TwilioRestException, TwilioException) as exc:
            raise carrier_error_from(exc, f"call {to_number}") from exc
        return call.sid

    def update_call_twiml(self, call_sid: str, twiml: str) -> None:
        """Replace the TwiML an in-progress call is executing."""
        try:
            self._client.calls(call_sid).update(twiml=twiml)
        except (TwilioRestException, TwilioException) as exc:
            raise carrier_error_from(exc, f"redirect call {call_sid}") from exc

    def start_recording(self, call_sid: str, status_callback: Optional[str] = None) -> str:
        """Start recording an in-progress call and return the Recording SID."""
        kwargs: Dict[str, Any] = {}
        if status_callback:
            kwargs = {
                "recording_status_callback": status_callback,
                "recording_status_callback_method": "POST",
            }
        try:
            recording = self._client.calls(call_sid).recordings.create(**kwargs)
        except (TwilioRestException, TwilioException) as exc:
            raise carrier_error_from(exc, f"record call {call_sid}") from exc
        return recording.sid

    def find_in_progress_conference(self, friendly_name: str) -> Optional[str]:
        try:
            conferences = self._client.conferences.list(
                friendly_name=friendly_name,
                status="in-progress",
                limit=1,
            )
        except (TwilioRestException, TwilioException) as exc:
            raise carrier_error_from(exc, f"look up conference {friendly_name}") from exc
        if not conferences:
            return None
        return conferences[0].sid

    def list_conference_participants(self, conference_sid: str) -> List[LiveParticipant]:
        try:
            participants = self._client.conferences(conference_sid).participants.list()
        except (TwilioRestException, TwilioException) as exc:
            raise carrier_error_from(exc, f"list participants of {conference_sid}") from exc
        return [
            LiveParticipant(
                call_sid=p.call_sid,
                muted=bool(p.muted),
                hold=bool(p.hold),
            )
            for p in participants
        ]

    def end_conference(self, conference_sid: str) -> None:
        try:
            self._client.conferences(conference_sid).update(status="completed")
        except (TwilioRestException, TwilioException) as exc:
            raise carrier_error_from(exc, f"end conference {conference_sid}") from exc


def get_twilio_client() -> TwilioClient:
    """
    FastAPI dependency to get a configured TwilioClient.
    Raises RuntimeError if configuration is incomplete.
    """
    settings = get_settings()

    missing: list[str] = []
    if not settings.TWILIO_ACCOUNT_SID:
        missing.append("TWILIO_ACCOUNT_SID")
    if not settings.TWILIO_AUTH_TOKEN:
        missing.append("TWILIO_AUTH_TOKEN")
    if not settings.TWILIO_PHONE_NUMBER:
        missing.append("TWILIO_PHONE_NUMBER")

    if missing:
        raise RuntimeError(f"Twilio not configured, missing: {', '.join(missing)}")

    return TwilioClient(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_PHONE_NUMBER,
        timeout=settings.CARRIER_API_TIMEOUT_SECONDS,
    )


async def verify_twilio_signature(request: Request) -> None:
    """
    FastAPI dependency for carrier webhooks: rejects requests whose
    X-Twilio-Signature does not match, when validation is enabled.
    """
    settings = get_settings()
    if not settings.TWILIO_VALIDATE_SIGNATURES:
        return

    if not settings.TWILIO_AUTH_TOKEN:
        raise RuntimeError("TWILIO_VALIDATE_SIGNATURES requires TWILIO_AUTH_TOKEN")

    form = await request.form()
    signature = request.headers.get("X-Twilio-Signature", "")
    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
    if not validator.validate(str(request.url), dict(form), signature):
        logger.warning("Rejected webhook with invalid Twilio signature: %s", request.url.path)
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


async def carrier_form(request: Request) -> Dict[str, Any]:
    """
    FastAPI dependency returning a webhook's parameters as a plain dict.

    Twilio POSTs form bodies but may be configured to use GET, in which case
    the same fields arrive in the query string.
    """
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update(form)
    return params

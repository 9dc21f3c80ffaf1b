# app/schemas/webhooks.py
"""
Typed carrier callback payloads.

Twilio posts form-encoded bodies with PascalCase keys; each callback kind
gets its own model so a malformed or unknown event is rejected at the
boundary instead of silently doing nothing.
"""
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from app.errors import ValidationError

ConferenceEventType = Literal[
    "conference-start",
    "conference-end",
    "participant-join",
    "participant-leave",
]


def _parse_carrier_timestamp(value: Any) -> Any:
    """Twilio sends RFC 2822 dates; ISO 8601 is accepted as well. Stored as naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parsedate_to_datetime(str(value))
        except (TypeError, ValueError):
            parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class CarrierCallback(BaseModel):
    model_config = ConfigDict(extra="ignore")


class InboundCallCallback(CarrierCallback):
    From: Optional[str] = None
    To: Optional[str] = None
    Digits: Optional[str] = None
    CallSid: Optional[str] = None


class DialStatusCallback(CarrierCallback):
    DialCallStatus: str = Field(min_length=1)
    DialCallDuration: Optional[int] = None
    CallSid: Optional[str] = None


class CallStatusCallback(CarrierCallback):
    CallSid: str = Field(min_length=1)
    CallStatus: str = Field(min_length=1)
    CallDuration: Optional[int] = None
    From: Optional[str] = None
    To: Optional[str] = None
    ErrorCode: Optional[str] = None
    ErrorMessage: Optional[str] = None


class ConferenceStatusCallback(CarrierCallback):
    ConferenceSid: str = Field(min_length=1)
    StatusCallbackEvent: ConferenceEventType
    # part of the ledger key, so retries of one event collapse to one row
    Timestamp: datetime
    FriendlyName: Optional[str] = None
    CallSid: Optional[str] = None
    SequenceNumber: Optional[int] = None

    @field_validator("Timestamp", mode="before")
    def parse_timestamp(cls, v: Any) -> Any:
        return _parse_carrier_timestamp(v)


class RecordingStatusCallback(CarrierCallback):
    RecordingStatus: str = Field(min_length=1)
    RecordingSid: Optional[str] = None
    RecordingUrl: Optional[str] = None
    RecordingDuration: Optional[int] = None
    CallSid: Optional[str] = None
    From: Optional[str] = None


class CallRecordingStatusCallback(RecordingStatusCallback):
    RecordingSid: str = Field(min_length=1)
    CallSid: str = Field(min_length=1)


class TranscriptionCallback(CarrierCallback):
    TranscriptionStatus: str = Field(min_length=1)
    TranscriptionText: Optional[str] = None
    RecordingUrl: Optional[str] = None
    RecordingDuration: Optional[int] = None
    CallSid: Optional[str] = None
    From: Optional[str] = None
    To: Optional[str] = None


class RecordingCompleteCallback(CarrierCallback):
    RecordingUrl: Optional[str] = None
    RecordingDuration: Optional[int] = None
    CallSid: Optional[str] = None


CallbackT = TypeVar("CallbackT", bound=CarrierCallback)


def parse_callback(model: Type[CallbackT], form: Mapping[str, Any]) -> CallbackT:
    """Validate a carrier form body, raising the engine's ValidationError."""
    try:
        return model.model_validate(dict(form))
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ValidationError(
            f"Invalid {model.__name__} payload",
            {"fields": fields},
        ) from exc

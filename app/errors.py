# app/errors.py
"""Engine error taxonomy.

Every error carries the HTTP status it maps to; `app.main` renders them as
``{"error": message, **details}``.
"""
from typing import Any, Dict, Optional


class PbxError(Exception):
    """Base engine error."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(PbxError):
    """Malformed or missing input. Never reaches the carrier."""

    status_code = 400


class NotFound(PbxError):
    """Entity absent, inactive, or owned by another tenant."""

    status_code = 404


class Unavailable(PbxError):
    """Presence-based routing refusal."""

    status_code = 409

    def __init__(self, message: str, target_status: str):
        super().__init__(message, {"target_status": target_status})
        self.target_status = target_status


class Conflict(PbxError):
    status_code = 409


class UnsupportedTarget(PbxError):
    """Transfer requested to a number outside the allow-list."""

    status_code = 400


class CarrierError(PbxError):
    """Twilio rejected or failed an API call."""

    INVALID_NUMBER = "invalid_number"
    UNVERIFIED_NUMBER = "unverified_number"
    TRANSIENT = "transient"

    def __init__(
        self,
        message: str,
        kind: str = TRANSIENT,
        code: Optional[int] = None,
    ):
        super().__init__(message, {"kind": kind, "carrier_code": code})
        self.kind = kind
        self.code = code
        self.status_code = 502 if kind == self.TRANSIENT else 400

# app/routers/internal_calls.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.internal_call import InternalCall
from app.services.internal_call_service import (
    end_internal_call,
    get_internal_call,
    list_internal_calls,
    start_internal_call,
)
from app.services.twilio_client import TwilioClient, get_twilio_client

router = APIRouter(prefix="/internal-calls", tags=["internal-calls"])


class InternalCallCreate(BaseModel):
    from_extension_id: int
    to_extension_id: int
    tenant_id: int

    @field_validator("from_extension_id", "to_extension_id", "tenant_id")
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive id")
        return v


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_internal_call(call: InternalCall) -> Dict[str, Any]:
    return {
        "id": call.id,
        "tenant_id": call.tenant_id,
        "from_extension_id": call.from_extension_id,
        "to_extension_id": call.to_extension_id,
        "conference_name": call.conference_name,
        "conference_sid": call.conference_sid,
        "caller_number": call.caller_number,
        "status": call.status,
        "created_at": _iso(call.created_at),
        "connected_at": _iso(call.connected_at),
        "ended_at": _iso(call.ended_at),
        "duration": call.duration,
        "last_event_at": _iso(call.last_event_at),
    }


@router.post("", status_code=201)
def create_internal_call(
    payload: InternalCallCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Start an extension-to-extension call.

    Both users are marked busy; the softphones then join the returned
    conference name.
    """
    internal_call = start_internal_call(
        db,
        from_extension_id=payload.from_extension_id,
        to_extension_id=payload.to_extension_id,
        tenant_id=payload.tenant_id,
    )
    return {
        "internal_call": serialize_internal_call(internal_call),
        "conference_name": internal_call.conference_name,
    }


@router.get("")
def get_internal_calls(
    tenant_id: int,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    calls = list_internal_calls(db, tenant_id, status=status)
    return {"internal_calls": [serialize_internal_call(c) for c in calls]}


@router.get("/{internal_call_id}")
def get_internal_call_detail(
    internal_call_id: int,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"internal_call": serialize_internal_call(get_internal_call(db, internal_call_id))}


@router.delete("/{internal_call_id}")
def end_internal_call_endpoint(
    internal_call_id: int,
    db: Session = Depends(get_db),
    twilio_client: TwilioClient = Depends(get_twilio_client),
) -> Dict[str, Any]:
    """End the call; repeating the request returns the same duration."""
    internal_call = end_internal_call(db, twilio_client, internal_call_id)
    return {
        "success": True,
        "status": internal_call.status,
        "duration_seconds": internal_call.duration,
    }

# app/routers/presence.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.session import get_db
from app.errors import NotFound
from app.services.presence_service import (
    PresenceView,
    get_presence,
    heartbeat,
    list_presence,
    set_presence,
)

router = APIRouter(prefix="/presence", tags=["presence"])


class PresenceUpdate(BaseModel):
    status: str
    status_message: Optional[str] = None
    tenant_id: Optional[int] = None
    extension_id: Optional[int] = None


class HeartbeatRequest(BaseModel):
    user_id: int
    tenant_id: Optional[int] = None


def serialize_presence(view: PresenceView) -> Dict[str, Any]:
    return {
        "user_id": view.user_id,
        "tenant_id": view.tenant_id,
        "extension_id": view.extension_id,
        "status": view.status,
        "status_message": view.status_message,
        "last_activity": view.last_activity.isoformat(),
        "is_stale": view.is_stale,
    }


@router.get("")
def list_tenant_presence(
    tenant_id: int,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Presence of every user in a tenant, with staleness applied."""
    return {"presence": [serialize_presence(v) for v in list_presence(db, tenant_id)]}


@router.get("/{user_id}")
def get_user_presence(
    user_id: int,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    view = get_presence(db, user_id)
    if view is None:
        raise NotFound("Presence not found")
    return {"presence": serialize_presence(view)}


@router.put("/{user_id}")
def update_user_presence(
    user_id: int,
    payload: PresenceUpdate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    set_presence(
        db,
        user_id=user_id,
        tenant_id=payload.tenant_id or get_settings().DEFAULT_TENANT_ID,
        status=payload.status,
        status_message=payload.status_message,
        extension_id=payload.extension_id,
    )
    return {"presence": serialize_presence(get_presence(db, user_id))}


@router.post("/heartbeat")
def presence_heartbeat(
    payload: HeartbeatRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    presence = heartbeat(
        db,
        user_id=payload.user_id,
        tenant_id=payload.tenant_id or get_settings().DEFAULT_TENANT_ID,
    )
    return {"success": True, "last_activity": presence.last_activity.isoformat()}

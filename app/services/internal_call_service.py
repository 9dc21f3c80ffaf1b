# app/services/internal_call_service.py
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import CarrierError, Conflict, NotFound, Unavailable, ValidationError
from app.models.base import utcnow
from app.models.extension import Extension
from app.models.internal_call import InternalCall, InternalCallStatus
from app.models.presence import UNREACHABLE_STATUSES, PresenceStatus
from app.services.extension_directory import get_tenant_extensions
from app.services.presence_service import get_presence, release_presence, set_presence
from app.services.twilio_client import TwilioClient

logger = logging.getLogger(__name__)


def new_conference_name(tenant_id: int) -> str:
    """Tenant-scoped and unique even for two calls started in the same millisecond."""
    return f"internal-{tenant_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def start_internal_call(
    db: Session,
    *,
    from_extension_id: int,
    to_extension_id: int,
    tenant_id: int,
    now: Optional[datetime] = None,
) -> InternalCall:
    """
    Record the intent of an extension-to-extension call.

    Preconditions are checked before anything is written. On success the
    call row and both users' `busy` presence are committed together; the
    presence versions observed here are what `end_internal_call` later
    compares against. Whether the legs actually connect is learned from
    the conference callbacks.
    """
    if from_extension_id == to_extension_id:
        raise ValidationError("An extension cannot call itself")

    extensions = {
        ext.id: ext
        for ext in get_tenant_extensions(db, tenant_id, [from_extension_id, to_extension_id])
    }
    from_ext: Optional[Extension] = extensions.get(from_extension_id)
    to_ext: Optional[Extension] = extensions.get(to_extension_id)
    if from_ext is None or to_ext is None:
        raise NotFound("Invalid extensions or extensions not found")

    if to_ext.assigned_user_id is not None:
        target = get_presence(db, to_ext.assigned_user_id, now=now)
        if target is not None and target.status in UNREACHABLE_STATUSES:
            raise Unavailable(
                f"Extension {to_ext.extension_number} is not available",
                target_status=target.status,
            )

    internal_call = InternalCall(
        tenant_id=tenant_id,
        from_extension_id=from_ext.id,
        to_extension_id=to_ext.id,
        conference_name=new_conference_name(tenant_id),
        status=InternalCallStatus.RINGING.value,
        created_at=now or utcnow(),
    )

    if from_ext.assigned_user_id is not None:
        presence = set_presence(
            db,
            user_id=from_ext.assigned_user_id,
            tenant_id=tenant_id,
            extension_id=from_ext.id,
            status=PresenceStatus.BUSY.value,
            status_message=f"On call with ext {to_ext.extension_number}",
            now=now,
            commit=False,
        )
        internal_call.from_user_id = presence.user_id
        internal_call.from_presence_version = presence.version

    if to_ext.assigned_user_id is not None:
        presence = set_presence(
            db,
            user_id=to_ext.assigned_user_id,
            tenant_id=tenant_id,
            extension_id=to_ext.id,
            status=PresenceStatus.BUSY.value,
            status_message=f"Call from ext {from_ext.extension_number}",
            now=now,
            commit=False,
        )
        internal_call.to_user_id = presence.user_id
        internal_call.to_presence_version = presence.version

    db.add(internal_call)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(
            "Internal call could not be recorded",
            {"conference_name": internal_call.conference_name},
        ) from exc
    db.refresh(internal_call)

    logger.info(
        "Internal call %s started: ext %s -> ext %s (%s)",
        internal_call.id,
        from_ext.extension_number,
        to_ext.extension_number,
        internal_call.conference_name,
    )
    return internal_call


def release_call_presence(db: Session, internal_call: InternalCall) -> Tuple[bool, bool]:
    """Compare-and-swap release of both users locked by this call."""
    released_from = release_presence(
        db,
        internal_call.from_user_id,
        internal_call.from_presence_version,
        commit=False,
    )
    released_to = release_presence(
        db,
        internal_call.to_user_id,
        internal_call.to_presence_version,
        commit=False,
    )
    return released_from, released_to


def end_internal_call(
    db: Session,
    carrier: TwilioClient,
    internal_call_id: int,
    now: Optional[datetime] = None,
) -> InternalCall:
    """
    Drive an internal call to `completed`.

    Idempotent: a call already in a terminal state is returned untouched,
    so the duration and presence stay what the first end produced.
    """
    internal_call = db.get(InternalCall, internal_call_id)
    if internal_call is None:
        raise NotFound("Internal call not found")

    if internal_call.is_terminal:
        return internal_call

    if internal_call.conference_sid:
        try:
            carrier.end_conference(internal_call.conference_sid)
        except CarrierError as exc:
            # the local transition does not wait for the carrier
            logger.warning(
                "Could not end conference %s for internal call %s: %s",
                internal_call.conference_sid,
                internal_call.id,
                exc.message,
            )

    now = now or utcnow()
    internal_call.status = InternalCallStatus.COMPLETED.value
    internal_call.ended_at = now
    internal_call.duration = max(0, int((now - internal_call.created_at).total_seconds()))
    internal_call.last_event_at = now

    release_call_presence(db, internal_call)
    db.commit()
    db.refresh(internal_call)
    return internal_call


def get_internal_call(db: Session, internal_call_id: int) -> InternalCall:
    internal_call = db.get(InternalCall, internal_call_id)
    if internal_call is None:
        raise NotFound("Internal call not found")
    return internal_call


def list_internal_calls(
    db: Session,
    tenant_id: int,
    status: Optional[str] = None,
) -> List[InternalCall]:
    query = db.query(InternalCall).filter(InternalCall.tenant_id == tenant_id)
    if status:
        query = query.filter(InternalCall.status == status)
    return query.order_by(InternalCall.created_at.desc(), InternalCall.id.desc()).all()

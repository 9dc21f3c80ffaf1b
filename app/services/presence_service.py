# app/services/presence_service.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import ValidationError
from app.models.base import utcnow
from app.models.presence import PresenceStatus, UserPresence

logger = logging.getLogger(__name__)

VALID_STATUSES = [s.value for s in PresenceStatus]


@dataclass
class PresenceView:
    """Presence as callers should see it: staleness already applied."""

    user_id: int
    tenant_id: int
    extension_id: Optional[int]
    status: str
    stored_status: str
    status_message: Optional[str]
    last_activity: datetime
    version: int

    @property
    def is_stale(self) -> bool:
        return self.status != self.stored_status


def effective_status(presence: UserPresence, now: Optional[datetime] = None) -> str:
    """
    A user whose last activity is older than the staleness window is
    offline, whatever the stored status says.
    """
    now = now or utcnow()
    stale_after = timedelta(seconds=get_settings().PRESENCE_STALE_SECONDS)
    if now - presence.last_activity > stale_after:
        return PresenceStatus.OFFLINE.value
    return presence.status


def _view(presence: UserPresence, now: Optional[datetime]) -> PresenceView:
    return PresenceView(
        user_id=presence.user_id,
        tenant_id=presence.tenant_id,
        extension_id=presence.extension_id,
        status=effective_status(presence, now),
        stored_status=presence.status,
        status_message=presence.status_message,
        last_activity=presence.last_activity,
        version=presence.version,
    )


def get_presence(
    db: Session,
    user_id: int,
    now: Optional[datetime] = None,
) -> Optional[PresenceView]:
    """Read-only; never writes the stale downgrade back."""
    presence = db.query(UserPresence).filter(UserPresence.user_id == user_id).first()
    if presence is None:
        return None
    return _view(presence, now)


def list_presence(
    db: Session,
    tenant_id: int,
    now: Optional[datetime] = None,
) -> List[PresenceView]:
    rows = (
        db.query(UserPresence)
        .filter(UserPresence.tenant_id == tenant_id)
        .order_by(UserPresence.last_activity.desc())
        .all()
    )
    return [_view(p, now) for p in rows]


def set_presence(
    db: Session,
    *,
    user_id: int,
    tenant_id: int,
    status: str,
    status_message: Optional[str] = None,
    extension_id: Optional[int] = None,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> UserPresence:
    """
    Write a status for a user and refresh `last_activity`.

    Every write bumps `version` in the same UPDATE statement, so a
    concurrent `release_presence` holding an older version loses.
    """
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}"
        )

    now = now or utcnow()
    values = {
        "status": status,
        "status_message": status_message,
        "last_activity": now,
        "version": UserPresence.version + 1,
    }
    if extension_id is not None:
        values["extension_id"] = extension_id

    result = db.execute(
        update(UserPresence)
        .where(UserPresence.user_id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        presence = UserPresence(
            tenant_id=tenant_id,
            user_id=user_id,
            extension_id=extension_id,
            status=status,
            status_message=status_message,
            last_activity=now,
            version=1,
        )
        db.add(presence)
        db.flush()
    else:
        presence = db.query(UserPresence).filter(UserPresence.user_id == user_id).one()
        db.refresh(presence)

    if commit:
        db.commit()
        db.refresh(presence)
    return presence


def heartbeat(
    db: Session,
    *,
    user_id: int,
    tenant_id: int,
    now: Optional[datetime] = None,
) -> UserPresence:
    """
    Keep a user's presence alive.

    Only `last_activity` moves; `version` is untouched because a heartbeat
    is not a status decision and must not block a pending call-end release.
    """
    now = now or utcnow()
    # user_id is the unique key; the tenant only matters for a new row
    presence = db.query(UserPresence).filter(UserPresence.user_id == user_id).first()
    if presence is None:
        return set_presence(
            db,
            user_id=user_id,
            tenant_id=tenant_id,
            status=PresenceStatus.AVAILABLE.value,
            now=now,
        )

    presence.last_activity = now
    db.commit()
    db.refresh(presence)
    return presence


def release_presence(
    db: Session,
    user_id: Optional[int],
    expected_version: Optional[int],
    commit: bool = True,
) -> bool:
    """
    Return a user to `available` after a call, unless someone wrote a newer
    status since the call locked it.

    Compare-and-swap on `version`: returns True only when the release was
    applied.
    """
    if user_id is None or expected_version is None:
        return False

    result = db.execute(
        update(UserPresence)
        .where(
            UserPresence.user_id == user_id,
            UserPresence.version == expected_version,
        )
        .values(
            status=PresenceStatus.AVAILABLE.value,
            status_message=None,
            version=UserPresence.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount == 1
    if not released:
        logger.info(
            "Presence release skipped for user %s: version moved past %s",
            user_id,
            expected_version,
        )
    if commit:
        db.commit()
    return released

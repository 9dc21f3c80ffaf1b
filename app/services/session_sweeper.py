# app/services/session_sweeper.py
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.base import utcnow
from app.models.internal_call import InternalCall, InternalCallStatus
from app.services.internal_call_service import release_call_presence

logger = logging.getLogger(__name__)


def expire_stale_sessions(
    db: Session,
    now: Optional[datetime] = None,
    ttl_seconds: Optional[int] = None,
) -> int:
    """
    Expire internal calls stuck in `ringing`.

    A call that never produced a connect or end callback would otherwise
    keep both users `busy` forever. Returns the number of calls expired.
    """
    now = now or utcnow()
    if ttl_seconds is None:
        ttl_seconds = get_settings().PENDING_SESSION_TTL_SECONDS
    cutoff = now - timedelta(seconds=ttl_seconds)

    stale = (
        db.query(InternalCall)
        .filter(
            InternalCall.status == InternalCallStatus.RINGING.value,
            InternalCall.created_at < cutoff,
        )
        .all()
    )

    for internal_call in stale:
        internal_call.status = InternalCallStatus.EXPIRED.value
        internal_call.ended_at = now
        internal_call.duration = max(0, int((now - internal_call.created_at).total_seconds()))
        release_call_presence(db, internal_call)
        logger.info("Internal call %s expired after %ss ringing", internal_call.id, ttl_seconds)

    if stale:
        db.commit()
    return len(stale)

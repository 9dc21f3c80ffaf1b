# app/models/internal_call.py
import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class InternalCallStatus(str, enum.Enum):
    RINGING = "ringing"
    CONNECTED = "connected"
    COMPLETED = "completed"
    MISSED = "missed"
    EXPIRED = "expired"


# Forward-only lattice; every terminal status shares the top rank.
STATUS_RANK = {
    InternalCallStatus.RINGING.value: 0,
    InternalCallStatus.CONNECTED.value: 1,
    InternalCallStatus.COMPLETED.value: 2,
    InternalCallStatus.MISSED.value: 2,
    InternalCallStatus.EXPIRED.value: 2,
}

TERMINAL_STATUSES = {
    InternalCallStatus.COMPLETED.value,
    InternalCallStatus.MISSED.value,
    InternalCallStatus.EXPIRED.value,
}


def can_transition(current: str, target: str) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    return STATUS_RANK[target] > STATUS_RANK[current]


class InternalCall(Base):
    """
    Extension-to-extension session (also used for IVR calls ringing an
    extension, where `from_extension_id` is empty).
    """

    __tablename__ = "internal_calls"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)

    from_extension_id = Column(
        Integer,
        ForeignKey("extensions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    to_extension_id = Column(
        Integer,
        ForeignKey("extensions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Tenant-scoped unique name; the carrier SID arrives with the first callback
    conference_name = Column(String(128), nullable=False, unique=True, index=True)
    conference_sid = Column(String(64), nullable=True, index=True)
    caller_number = Column(String(32), nullable=True)

    status = Column(String(16), nullable=False, default=InternalCallStatus.RINGING.value)

    # Presence locks taken by `start`, released by compare-and-swap on end
    from_user_id = Column(Integer, nullable=True)
    from_presence_version = Column(Integer, nullable=True)
    to_user_id = Column(Integer, nullable=True)
    to_presence_version = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    connected_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)
    last_event_at = Column(DateTime, nullable=True)

    from_extension = relationship("Extension", foreign_keys=[from_extension_id])
    to_extension = relationship("Extension", foreign_keys=[to_extension_id])

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

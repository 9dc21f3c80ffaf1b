# app/models/presence.py
import enum

from sqlalchemy import Column, DateTime, Integer, String

from app.models.base import Base, utcnow


class PresenceStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    DND = "dnd"
    OFFLINE = "offline"


UNREACHABLE_STATUSES = {PresenceStatus.DND.value, PresenceStatus.OFFLINE.value}


class UserPresence(Base):
    """
    Live availability of a user, one row per user.

    `version` is bumped on every status write and is what call-end
    releases compare against.
    """

    __tablename__ = "user_presence"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)
    extension_id = Column(Integer, nullable=True)

    status = Column(String(16), nullable=False, default=PresenceStatus.AVAILABLE.value)
    status_message = Column(String(255), nullable=True)

    last_activity = Column(DateTime, default=utcnow, nullable=False)
    version = Column(Integer, nullable=False, default=1)

# app/models/conference.py
import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class ConferenceStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ParticipantStatus(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConferenceCall(Base):
    """
    Multi-party bridge hosted by the carrier.

    Only persisted once the carrier has reported the conference SID, so
    `active` always reflects carrier confirmation.
    """

    __tablename__ = "conference_calls"

    id = Column(Integer, primary_key=True, index=True)
    conference_name = Column(String(128), nullable=False, index=True)
    conference_sid = Column(String(64), nullable=False, unique=True, index=True)
    initiator_number = Column(String(32), nullable=True)

    status = Column(String(16), nullable=False, default=ConferenceStatus.ACTIVE.value)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    last_event_at = Column(DateTime, nullable=True)

    participants = relationship(
        "ConferenceParticipant",
        back_populates="conference",
        order_by="ConferenceParticipant.joined_at",
    )


class ConferenceParticipant(Base):
    __tablename__ = "conference_participants"

    id = Column(Integer, primary_key=True, index=True)

    conference_id = Column(
        Integer,
        ForeignKey("conference_calls.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    participant_number = Column(String(64), nullable=True)
    participant_name = Column(String(255), nullable=True)
    call_sid = Column(String(64), nullable=True, index=True)

    status = Column(String(16), nullable=False, default=ParticipantStatus.CONNECTED.value)

    joined_at = Column(DateTime, default=utcnow, nullable=False)
    # set exactly once
    left_at = Column(DateTime, nullable=True)

    conference = relationship("ConferenceCall", back_populates="participants")

    def mark_left(self, when) -> bool:
        """Disconnect this leg; returns False if it had already left."""
        if self.left_at is not None:
            return False
        self.status = ParticipantStatus.DISCONNECTED.value
        self.left_at = when
        return True

# app/models/call.py
import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class CallDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


# Twilio CallStatus values after which a leg can no longer change
TERMINAL_CALL_STATUSES = {"completed", "busy", "failed", "no-answer", "canceled"}


class PhoneCallLog(Base):
    """
    Durable record of one carrier call leg.

    The engine writes it; reporting and CRM collaborators own reading it.
    """

    __tablename__ = "phone_call_logs"

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(Integer, nullable=True, index=True)
    extension_id = Column(
        Integer,
        ForeignKey("extensions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Twilio's CallSid
    provider_call_id = Column(String(64), unique=True, index=True, nullable=True)
    direction = Column(String(16), nullable=False, default=CallDirection.INBOUND.value)
    from_number = Column(String(32), nullable=True)
    to_number = Column(String(32), nullable=True)
    status = Column(String(32), nullable=False, default="ringing")
    duration = Column(Integer, nullable=False, default=0)

    is_voicemail = Column(Boolean, nullable=False, default=False)
    voicemail_url = Column(String(512), nullable=True)
    voicemail_duration = Column(Integer, nullable=True)
    voicemail_transcription = Column(Text, nullable=True)

    recording_url = Column(String(512), nullable=True)
    recording_duration = Column(Integer, nullable=True)
    recording_consent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    extension = relationship("Extension")

# app/models/recording.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class CallRecording(Base):
    """A finished live-call recording, started only after consent."""

    __tablename__ = "call_recordings"

    id = Column(Integer, primary_key=True, index=True)

    call_log_id = Column(
        Integer,
        ForeignKey("phone_call_logs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Twilio's RecordingSid; redelivered callbacks hit this key
    recording_sid = Column(String(64), unique=True, index=True, nullable=False)
    provider_call_id = Column(String(64), index=True, nullable=True)
    recording_url = Column(String(512), nullable=False)
    duration = Column(Integer, nullable=False, default=0)
    consent_given = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    call_log = relationship("PhoneCallLog", backref="recordings")

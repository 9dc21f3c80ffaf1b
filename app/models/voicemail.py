# app/models/voicemail.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Voicemail(Base):
    __tablename__ = "voicemails"

    id = Column(Integer, primary_key=True, index=True)

    call_log_id = Column(
        Integer,
        ForeignKey("phone_call_logs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    extension_id = Column(Integer, nullable=True, index=True)

    provider_call_id = Column(String(64), unique=True, nullable=True)
    from_number = Column(String(32), nullable=True)
    recording_url = Column(String(512), nullable=False)
    duration = Column(Integer, nullable=False, default=0)
    transcription = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    call_log = relationship("PhoneCallLog", backref="voicemails")

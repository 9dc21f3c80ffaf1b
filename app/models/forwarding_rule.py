# app/models/forwarding_rule.py
import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class ForwardingCondition(str, enum.Enum):
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    ALWAYS = "always"
    AFTER_RINGS = "after_rings"


DEFAULT_RING_COUNT = 4


class CallForwardingRule(Base):
    __tablename__ = "call_forwarding_rules"

    id = Column(Integer, primary_key=True, index=True)

    extension_id = Column(
        Integer,
        ForeignKey("extensions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    rule_name = Column(String(255), nullable=False)
    condition_type = Column(String(16), nullable=False)
    # only meaningful for after_rings
    ring_count = Column(Integer, nullable=True)
    forward_to_number = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    extension = relationship("Extension", back_populates="forwarding_rules")

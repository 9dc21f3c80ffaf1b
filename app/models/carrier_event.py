# app/models/carrier_event.py
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from app.models.base import Base, utcnow


class CarrierEvent(Base):
    """
    Append-only ledger of conference callbacks.

    Session status is derived by folding these rows, so a retried or
    duplicated delivery is simply rejected by the unique key.
    """

    __tablename__ = "carrier_events"
    __table_args__ = (
        UniqueConstraint(
            "resource_sid",
            "event_type",
            "call_sid",
            "event_timestamp",
            name="uq_carrier_event",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    resource_sid = Column(String(64), nullable=False, index=True)
    friendly_name = Column(String(128), nullable=True, index=True)
    event_type = Column(String(32), nullable=False)
    # "" rather than NULL so the unique key covers conference-level events
    call_sid = Column(String(64), nullable=False, default="")
    event_timestamp = Column(DateTime, nullable=False)
    sequence_number = Column(Integer, nullable=True)

    received_at = Column(DateTime, default=utcnow, nullable=False)

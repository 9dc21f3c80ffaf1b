# app/models/extension.py
from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Extension(Base):
    """
    Routable endpoint within a tenant.

    Owned by tenant administration; the engine only reads it.
    """

    __tablename__ = "extensions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "extension_number", name="uq_extension_tenant_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)

    # 3–4 digit string, matched exactly
    extension_number = Column(String(8), nullable=False, index=True)
    extension_name = Column(String(255), nullable=True)

    assigned_user_id = Column(Integer, nullable=True, index=True)
    call_forwarding_number = Column(String(32), nullable=True)

    voicemail_enabled = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    forwarding_rules = relationship(
        "CallForwardingRule",
        back_populates="extension",
        order_by="CallForwardingRule.id",
    )

    @property
    def display_name(self) -> str:
        return self.extension_name or f"extension {self.extension_number}"

# tests/test_db_basic.py
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.session import engine, SessionLocal
from app.models import Base, Extension


def test_db_can_create_schema():
    # Ensure metadata can create tables
    Base.metadata.create_all(bind=engine)

    # Simple connectivity test
    with engine.connect() as conn:
        result = conn.execute(text("SELECT 1"))
        assert result.scalar() == 1


def test_extension_number_is_unique_per_tenant():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        db.add(Extension(tenant_id=1, extension_number="101", extension_name="Front desk"))
        db.add(Extension(tenant_id=2, extension_number="101", extension_name="Other tenant"))
        db.commit()

        db.add(Extension(tenant_id=1, extension_number="101", extension_name="Duplicate"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

        fetched = db.query(Extension).filter_by(tenant_id=1, extension_number="101").one()
        assert fetched.display_name
        assert fetched.voicemail_enabled is True
        assert fetched.is_active is True
    finally:
        db.close()

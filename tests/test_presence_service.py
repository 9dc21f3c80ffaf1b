# tests/test_presence_service.py
from datetime import timedelta

import pytest

from app.db.session import engine, SessionLocal
from app.errors import ValidationError
from app.models import Base, UserPresence
from app.models.base import utcnow
from app.services.presence_service import (
    get_presence,
    heartbeat,
    list_presence,
    release_presence,
    set_presence,
)


def _clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def test_stale_presence_reads_offline_without_writing():
    _clean_db()
    db = SessionLocal()
    try:
        start = utcnow()
        set_presence(db, user_id=1, tenant_id=1, status="available", now=start)

        fresh = get_presence(db, 1, now=start + timedelta(seconds=299))
        assert fresh.status == "available"
        assert not fresh.is_stale

        stale = get_presence(db, 1, now=start + timedelta(seconds=301))
        assert stale.status == "offline"
        assert stale.stored_status == "available"
        assert stale.is_stale

        stored = db.query(UserPresence).filter_by(user_id=1).one()
        assert stored.status == "available"
    finally:
        db.close()


def test_every_status_write_bumps_version():
    _clean_db()
    db = SessionLocal()
    try:
        first = set_presence(db, user_id=2, tenant_id=1, status="available")
        assert first.version == 1
        second = set_presence(db, user_id=2, tenant_id=1, status="busy")
        assert second.version == 2
        assert second.status == "busy"
    finally:
        db.close()


def test_invalid_status_is_rejected():
    _clean_db()
    db = SessionLocal()
    try:
        with pytest.raises(ValidationError):
            set_presence(db, user_id=3, tenant_id=1, status="away")
        assert get_presence(db, 3) is None
    finally:
        db.close()


def test_release_applies_when_version_unchanged():
    _clean_db()
    db = SessionLocal()
    try:
        locked = set_presence(db, user_id=4, tenant_id=1, status="busy")
        assert release_presence(db, 4, locked.version) is True
        assert get_presence(db, 4).status == "available"
    finally:
        db.close()


def test_release_loses_to_manual_dnd():
    _clean_db()
    db = SessionLocal()
    try:
        locked = set_presence(db, user_id=5, tenant_id=1, status="busy")
        set_presence(db, user_id=5, tenant_id=1, status="dnd", status_message="Focus time")

        assert release_presence(db, 5, locked.version) is False

        view = get_presence(db, 5)
        assert view.status == "dnd"
        assert view.status_message == "Focus time"
    finally:
        db.close()


def test_heartbeat_refreshes_activity_but_not_version():
    _clean_db()
    db = SessionLocal()
    try:
        start = utcnow() - timedelta(minutes=10)
        locked = set_presence(db, user_id=6, tenant_id=1, status="busy", now=start)
        assert get_presence(db, 6).status == "offline"

        heartbeat(db, user_id=6, tenant_id=1)

        view = get_presence(db, 6)
        assert view.status == "busy"
        assert view.version == locked.version
        assert release_presence(db, 6, locked.version) is True
    finally:
        db.close()


def test_heartbeat_creates_available_presence():
    _clean_db()
    db = SessionLocal()
    try:
        heartbeat(db, user_id=7, tenant_id=1)
        assert get_presence(db, 7).status == "available"
    finally:
        db.close()


def test_heartbeat_under_another_tenant_only_moves_activity():
    _clean_db()
    db = SessionLocal()
    try:
        start = utcnow() - timedelta(minutes=1)
        version = set_presence(
            db, user_id=10, tenant_id=2, status="dnd", status_message="Focus time", now=start
        ).version

        heartbeat(db, user_id=10, tenant_id=1)

        stored = db.query(UserPresence).filter_by(user_id=10).one()
        assert stored.status == "dnd"
        assert stored.status_message == "Focus time"
        assert stored.tenant_id == 2
        assert stored.version == version
        assert stored.last_activity > start
    finally:
        db.close()


def test_list_presence_is_tenant_scoped():
    _clean_db()
    db = SessionLocal()
    try:
        set_presence(db, user_id=8, tenant_id=1, status="available")
        set_presence(db, user_id=9, tenant_id=2, status="dnd")

        views = list_presence(db, 1)
        assert [v.user_id for v in views] == [8]
    finally:
        db.close()

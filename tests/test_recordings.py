# tests/test_recordings.py
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from twilio.base.exceptions import TwilioRestException

from app.main import app
from app.db.session import engine, SessionLocal
from app.errors import CarrierError
from app.models import Base, CallRecording, PhoneCallLog
from app.services.twilio_client import TwilioClient, get_twilio_client

client = TestClient(app)

RECORDING_STATUS = {
    "RecordingSid": "RE_LIVE_1",
    "RecordingStatus": "completed",
    "RecordingUrl": "https://api.twilio.com/2010-04-01/Accounts/AC1/Recordings/RE_LIVE_1",
    "RecordingDuration": "95",
    "CallSid": "CA_REC_1",
}


class FakeTwilioClient:
    def __init__(self):
        self.recorded = []

    def start_recording(self, call_sid: str, status_callback=None) -> str:
        self.recorded.append((call_sid, status_callback))
        return "RE_LIVE_1"


def _clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _start(fake: FakeTwilioClient, **payload):
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        return client.put("/recordings", json=payload)
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)


def test_recording_without_consent_never_reaches_carrier():
    _clean_db()
    fake = FakeTwilioClient()

    response = _start(fake, callSid="CA_REC_1")
    assert response.status_code == 400
    assert response.json()["error"] == "Recording consent required"

    response = _start(fake, callSid="CA_REC_1", consentGiven=False)
    assert response.status_code == 400
    assert fake.recorded == []


def test_recording_with_consent_starts_and_flags_call_log():
    _clean_db()
    db = SessionLocal()
    try:
        db.add(PhoneCallLog(provider_call_id="CA_REC_1", status="in-progress", direction="inbound"))
        db.commit()
    finally:
        db.close()

    fake = FakeTwilioClient()
    response = _start(fake, callSid="CA_REC_1", consentGiven=True)

    assert response.status_code == 200
    assert response.json()["recordingSid"] == "RE_LIVE_1"
    assert fake.recorded[0][0] == "CA_REC_1"

    db = SessionLocal()
    try:
        log = db.query(PhoneCallLog).filter_by(provider_call_id="CA_REC_1").one()
        assert log.recording_consent is True
    finally:
        db.close()


def test_completed_recording_is_stored_once_per_recording_sid():
    _clean_db()
    db = SessionLocal()
    try:
        db.add(PhoneCallLog(provider_call_id="CA_REC_1", status="completed", direction="inbound"))
        db.commit()
    finally:
        db.close()

    first = client.post("/twilio/recording-status", data=RECORDING_STATUS)
    second = client.post("/twilio/recording-status", data=RECORDING_STATUS)
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["recording_id"] == second.json()["recording_id"]

    db = SessionLocal()
    try:
        recording = db.query(CallRecording).one()
        assert recording.provider_call_id == "CA_REC_1"
        assert recording.recording_url.endswith("/RE_LIVE_1.mp3")
        assert recording.duration == 95

        log = db.query(PhoneCallLog).filter_by(provider_call_id="CA_REC_1").one()
        assert recording.call_log_id == log.id
        assert log.recording_url == recording.recording_url
        assert log.recording_duration == 95
        assert log.recording_consent is True
    finally:
        db.close()

    listed = client.get("/recordings", params={"callSid": "CA_REC_1"}).json()["data"]
    assert [r["recordingSid"] for r in listed] == ["RE_LIVE_1"]


def test_in_progress_recording_is_not_stored():
    _clean_db()
    data = dict(RECORDING_STATUS, RecordingStatus="in-progress")
    response = client.post("/twilio/recording-status", data=data)

    assert response.status_code == 200
    assert response.json()["recording_id"] is None
    db = SessionLocal()
    try:
        assert db.query(CallRecording).count() == 0
    finally:
        db.close()


def test_recording_status_requires_recording_sid():
    data = {k: v for k, v in RECORDING_STATUS.items() if k != "RecordingSid"}
    response = client.post("/twilio/recording-status", data=data)
    assert response.status_code == 400
    assert "RecordingSid" in response.json()["fields"]


class _FakeRecordings:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []

    def create(self, **kwargs):
        if self.fail:
            raise TwilioRestException(404, "/Calls/CA_GONE/Recordings.json", msg="Call not found", code=20404)
        self.created.append(kwargs)
        return SimpleNamespace(sid="RE_SDK_1")


class _FakeSDK:
    def __init__(self, recordings):
        self._recordings = recordings

    def calls(self, call_sid):
        return SimpleNamespace(recordings=self._recordings)


def test_twilio_client_start_recording_passes_status_callback():
    carrier = TwilioClient("AC_TEST", "token", "+15550000000")
    recordings = _FakeRecordings()
    carrier._client = _FakeSDK(recordings)

    sid = carrier.start_recording("CA_REC_1", "https://pbx.example.com/twilio/recording-status")

    assert sid == "RE_SDK_1"
    assert recordings.created == [
        {
            "recording_status_callback": "https://pbx.example.com/twilio/recording-status",
            "recording_status_callback_method": "POST",
        }
    ]


def test_twilio_client_start_recording_maps_errors():
    carrier = TwilioClient("AC_TEST", "token", "+15550000000")
    carrier._client = _FakeSDK(_FakeRecordings(fail=True))

    with pytest.raises(CarrierError) as excinfo:
        carrier.start_recording("CA_GONE")
    assert excinfo.value.kind == CarrierError.TRANSIENT
    assert excinfo.value.code == 20404

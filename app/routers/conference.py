# app/routers/conference.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.conference import ConferenceCall, ConferenceParticipant
from app.services.conference_service import (
    ParticipantView,
    add_participant,
    reconcile_conference,
    start_conference,
)
from app.services.twilio_client import TwilioClient, get_twilio_client

router = APIRouter(prefix="/conference", tags=["conference"])


class CamelModel(BaseModel):
    # the softphone posts camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConferenceStartRequest(CamelModel):
    conference_name: str
    current_call_sid: str


class AddParticipantRequest(CamelModel):
    conference_sid: str
    participant_number: str


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_participant(
    participant: ConferenceParticipant,
    view: Optional[ParticipantView] = None,
) -> Dict[str, Any]:
    data = {
        "id": participant.id,
        "participantNumber": participant.participant_number,
        "participantName": participant.participant_name,
        "callSid": participant.call_sid,
        "status": participant.status,
        "joinedAt": _iso(participant.joined_at),
        "leftAt": _iso(participant.left_at),
    }
    if view is not None:
        data["muted"] = view.muted
        data["hold"] = view.hold
    return data


def serialize_conference(conference: ConferenceCall) -> Dict[str, Any]:
    return {
        "id": conference.id,
        "conferenceName": conference.conference_name,
        "conferenceSid": conference.conference_sid,
        "initiatorNumber": conference.initiator_number,
        "status": conference.status,
        "createdAt": _iso(conference.created_at),
        "endedAt": _iso(conference.ended_at),
    }


@router.post("/start")
def start_conference_endpoint(
    payload: ConferenceStartRequest,
    db: Session = Depends(get_db),
    twilio_client: TwilioClient = Depends(get_twilio_client),
) -> Dict[str, Any]:
    """Move the caller's current leg into a new conference."""
    conference, participants = start_conference(
        db,
        twilio_client,
        conference_name=payload.conference_name,
        current_call_sid=payload.current_call_sid,
    )
    return {
        "success": True,
        "conferenceId": conference.id,
        "conferenceSid": conference.conference_sid,
        "conferenceName": conference.conference_name,
        "participants": [serialize_participant(p) for p in participants],
    }


@router.post("/add-participant")
def add_participant_endpoint(
    payload: AddParticipantRequest,
    db: Session = Depends(get_db),
    twilio_client: TwilioClient = Depends(get_twilio_client),
) -> Dict[str, Any]:
    participant = add_participant(
        db,
        twilio_client,
        conference_sid=payload.conference_sid,
        participant_number=payload.participant_number,
    )
    return {"success": True, "participant": serialize_participant(participant)}


@router.get("/{conference_id}")
def get_conference(
    conference_id: int,
    db: Session = Depends(get_db),
    twilio_client: TwilioClient = Depends(get_twilio_client),
) -> Dict[str, Any]:
    """Conference details, reconciled against the carrier's live legs."""
    conference, views = reconcile_conference(db, twilio_client, conference_id)
    data = serialize_conference(conference)
    data["participants"] = [serialize_participant(v.participant, v) for v in views]
    return {"data": data}

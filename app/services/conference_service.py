# app/services/conference_service.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import CarrierError, NotFound, ValidationError
from app.models.base import utcnow
from app.models.conference import (
    ConferenceCall,
    ConferenceParticipant,
    ConferenceStatus,
    ParticipantStatus,
)
from app.services import twiml
from app.services.phone_numbers import normalize_phone_number
from app.services.twilio_client import LiveParticipant, TwilioClient
from app.services.webhook_service import replay_conference_events

logger = logging.getLogger(__name__)

ContactLookup = Callable[[str], Optional[str]]


@dataclass
class ParticipantView:
    participant: ConferenceParticipant
    muted: bool = False
    hold: bool = False


def _wait_for_conference_sid(
    carrier: TwilioClient,
    conference_name: str,
    retries: int,
    delay: float,
) -> Optional[str]:
    """
    The carrier creates a conference when the first leg lands in it, not
    when we ask; poll a bounded number of times for its SID.
    """
    for attempt in range(1, retries + 1):
        sid = carrier.find_in_progress_conference(conference_name)
        if sid:
            return sid
        if attempt < retries:
            time.sleep(delay)
    return None


def start_conference(
    db: Session,
    carrier: TwilioClient,
    *,
    conference_name: str,
    current_call_sid: str,
    retries: Optional[int] = None,
    delay: Optional[float] = None,
) -> Tuple[ConferenceCall, List[ConferenceParticipant]]:
    """
    Move an in-progress call into a new named conference and start
    tracking it.

    The conference row is only written after the carrier reported the
    conference as in progress.
    """
    if not conference_name or not current_call_sid:
        raise ValidationError("conferenceName and currentCallSid are required")

    settings = get_settings()
    retries = settings.CONFERENCE_LOOKUP_RETRIES if retries is None else retries
    delay = settings.CONFERENCE_LOOKUP_DELAY_SECONDS if delay is None else delay

    carrier.update_call_twiml(
        current_call_sid,
        twiml.conference_twiml(conference_name, start_on_enter=True, end_on_exit=False),
    )

    conference_sid = _wait_for_conference_sid(carrier, conference_name, retries, delay)
    if conference_sid is None:
        raise CarrierError(f"Conference {conference_name} not found after creation")

    conference = db.query(ConferenceCall).filter_by(conference_sid=conference_sid).first()
    if conference is None:
        conference = ConferenceCall(
            conference_name=conference_name,
            conference_sid=conference_sid,
            initiator_number=settings.TWILIO_PHONE_NUMBER,
            status=ConferenceStatus.ACTIVE.value,
        )
        db.add(conference)
        db.flush()

    known = {p.call_sid for p in conference.participants}
    for live in carrier.list_conference_participants(conference_sid):
        if live.call_sid in known:
            continue
        db.add(
            ConferenceParticipant(
                conference_id=conference.id,
                # the participant resource carries no phone number
                participant_number=live.call_sid,
                call_sid=live.call_sid,
                status=ParticipantStatus.CONNECTED.value,
            )
        )
    db.commit()

    # callbacks may have beaten us here
    replay_conference_events(db, conference)
    db.refresh(conference)

    logger.info("Conference %s started as %s", conference_name, conference_sid)
    return conference, list(conference.participants)


def add_participant(
    db: Session,
    carrier: TwilioClient,
    *,
    conference_sid: str,
    participant_number: str,
    contact_lookup: Optional[ContactLookup] = None,
) -> ConferenceParticipant:
    """
    Dial a number into an active conference.

    The new leg neither starts nor ends the conference. A carrier failure
    propagates and leaves no local row behind.
    """
    if not conference_sid or not participant_number:
        raise ValidationError("conferenceSid and participantNumber are required")

    number = normalize_phone_number(participant_number)

    conference = (
        db.query(ConferenceCall)
        .filter(
            ConferenceCall.conference_sid == conference_sid,
            ConferenceCall.status == ConferenceStatus.ACTIVE.value,
        )
        .first()
    )
    if conference is None:
        raise NotFound("Conference not found or not active")

    call_sid = carrier.create_outbound_call(
        to_number=number,
        twiml=twiml.conference_twiml(
            conference.conference_name,
            start_on_enter=False,
            end_on_exit=False,
        ),
    )

    display_name = number
    if contact_lookup is not None:
        try:
            display_name = contact_lookup(number) or number
        except Exception as exc:
            logger.info("Contact lookup failed for %s: %s", number, exc)

    participant = ConferenceParticipant(
        conference_id=conference.id,
        participant_number=number,
        participant_name=display_name,
        call_sid=call_sid,
        status=ParticipantStatus.CONNECTED.value,
    )
    db.add(participant)
    db.commit()
    db.refresh(participant)
    return participant


def reconcile_conference(
    db: Session,
    carrier: TwilioClient,
    conference_id: int,
    now: Optional[datetime] = None,
) -> Tuple[ConferenceCall, List[ParticipantView]]:
    """
    Re-derive a conference's state from the carrier's live participant list.

    Live legs are marked connected (a disconnected leg stays disconnected).
    When the carrier answers with an empty list for a conference we still
    consider active, the conference is completed and every open leg closed.
    If the carrier cannot be asked, the stored view is returned as is.
    """
    conference = db.get(ConferenceCall, conference_id)
    if conference is None:
        raise NotFound("Conference not found")

    live: Optional[Dict[str, LiveParticipant]] = None
    if conference.status == ConferenceStatus.ACTIVE.value:
        try:
            live = {p.call_sid: p for p in carrier.list_conference_participants(conference.conference_sid)}
        except CarrierError as exc:
            logger.info("Could not fetch live participants for %s: %s", conference.conference_sid, exc.message)

    views: List[ParticipantView] = []
    changed = False
    for participant in conference.participants:
        live_leg = live.get(participant.call_sid) if live else None
        if live_leg is not None and participant.status != ParticipantStatus.DISCONNECTED.value:
            if participant.status != ParticipantStatus.CONNECTED.value:
                participant.status = ParticipantStatus.CONNECTED.value
                changed = True
        views.append(
            ParticipantView(
                participant=participant,
                muted=live_leg.muted if live_leg else False,
                hold=live_leg.hold if live_leg else False,
            )
        )

    if live is not None and not live and conference.status == ConferenceStatus.ACTIVE.value:
        now = now or utcnow()
        conference.status = ConferenceStatus.COMPLETED.value
        conference.ended_at = now
        for participant in conference.participants:
            participant.mark_left(now)
        changed = True
        logger.info("Conference %s has no live legs, marked completed", conference.conference_sid)

    if changed:
        db.commit()
        db.refresh(conference)
    return conference, views

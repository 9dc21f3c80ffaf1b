# app/services/webhook_service.py
"""
Webhook reconciliation.

Conference callbacks may arrive late, twice, or out of order. Each one is
appended to the `carrier_events` ledger first (duplicates are dropped by
its unique key), then the affected sessions are re-derived by folding all
of their events in timestamp order. Status only moves forward and
terminal states are sticky, so the outcome does not depend on delivery
order and replaying the ledger is harmless.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.carrier_event import CarrierEvent
from app.models.conference import (
    ConferenceCall,
    ConferenceParticipant,
    ConferenceStatus,
    ParticipantStatus,
)
from app.models.internal_call import InternalCall, InternalCallStatus, can_transition
from app.schemas.webhooks import ConferenceStatusCallback
from app.services.internal_call_service import release_call_presence

logger = logging.getLogger(__name__)

CONFERENCE_START = "conference-start"
CONFERENCE_END = "conference-end"
PARTICIPANT_JOIN = "participant-join"
PARTICIPANT_LEAVE = "participant-leave"

# participant-leave never moves the aggregate status
_INTERNAL_CALL_TARGETS = {
    CONFERENCE_START: InternalCallStatus.CONNECTED.value,
    PARTICIPANT_JOIN: InternalCallStatus.CONNECTED.value,
    CONFERENCE_END: InternalCallStatus.COMPLETED.value,
}


@dataclass
class WebhookOutcome:
    status: str  # applied | duplicate | unmatched
    event_id: Optional[int] = None
    internal_call_id: Optional[int] = None
    conference_id: Optional[int] = None


def record_carrier_event(db: Session, event: ConferenceStatusCallback) -> Optional[CarrierEvent]:
    """Append a callback to the ledger; None if this exact event is already there."""
    event_timestamp = event.Timestamp
    call_sid = event.CallSid or ""

    existing = (
        db.query(CarrierEvent)
        .filter_by(
            resource_sid=event.ConferenceSid,
            event_type=event.StatusCallbackEvent,
            call_sid=call_sid,
            event_timestamp=event_timestamp,
        )
        .first()
    )
    if existing is not None:
        return None

    row = CarrierEvent(
        resource_sid=event.ConferenceSid,
        friendly_name=event.FriendlyName,
        event_type=event.StatusCallbackEvent,
        call_sid=call_sid,
        event_timestamp=event_timestamp,
        sequence_number=event.SequenceNumber,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent delivery of the same event
        db.rollback()
        return None
    db.refresh(row)
    return row


def ordered_events(db: Session, resource_sid: str) -> List[CarrierEvent]:
    events = db.query(CarrierEvent).filter(CarrierEvent.resource_sid == resource_sid).all()
    return sorted(
        events,
        key=lambda e: (e.event_timestamp, e.sequence_number or 0, e.id),
    )


def fold_internal_call_status(current: str, events: Iterable[CarrierEvent]) -> str:
    status = current
    for event in events:
        target = _INTERNAL_CALL_TARGETS.get(event.event_type)
        if target is not None and can_transition(status, target):
            status = target
    return status


def apply_internal_call_events(
    db: Session,
    internal_call: InternalCall,
    events: List[CarrierEvent],
) -> None:
    if not events:
        return

    latest = events[-1].event_timestamp
    if internal_call.last_event_at is None or latest > internal_call.last_event_at:
        internal_call.last_event_at = latest

    target = fold_internal_call_status(internal_call.status, events)
    if target == internal_call.status:
        return

    if internal_call.connected_at is None:
        connect = next((e for e in events if e.event_type in (CONFERENCE_START, PARTICIPANT_JOIN)), None)
        if connect is not None:
            internal_call.connected_at = connect.event_timestamp

    if target == InternalCallStatus.COMPLETED.value:
        end = next(e for e in events if e.event_type == CONFERENCE_END)
        internal_call.ended_at = end.event_timestamp
        internal_call.duration = max(
            0, int((end.event_timestamp - internal_call.created_at).total_seconds())
        )
        release_call_presence(db, internal_call)

    logger.info("Internal call %s: %s -> %s", internal_call.id, internal_call.status, target)
    internal_call.status = target


def _participant_by_call_sid(conference: ConferenceCall, call_sid: str) -> Optional[ConferenceParticipant]:
    for participant in conference.participants:
        if participant.call_sid == call_sid:
            return participant
    return None


def apply_conference_events(
    db: Session,
    conference: ConferenceCall,
    events: List[CarrierEvent],
) -> None:
    for event in events:
        ts = event.event_timestamp
        if conference.last_event_at is None or ts > conference.last_event_at:
            conference.last_event_at = ts

        if event.event_type == CONFERENCE_END:
            if conference.status != ConferenceStatus.COMPLETED.value:
                conference.status = ConferenceStatus.COMPLETED.value
                conference.ended_at = ts
            for participant in conference.participants:
                participant.mark_left(ts)

        elif event.event_type == PARTICIPANT_JOIN and event.call_sid:
            participant = _participant_by_call_sid(conference, event.call_sid)
            if participant is None:
                if conference.status == ConferenceStatus.COMPLETED.value:
                    continue
                participant = ConferenceParticipant(
                    call_sid=event.call_sid,
                    participant_number=event.call_sid,
                    status=ParticipantStatus.CONNECTED.value,
                    joined_at=ts,
                )
                conference.participants.append(participant)
            elif participant.left_at is None:
                participant.status = ParticipantStatus.CONNECTED.value

        elif event.event_type == PARTICIPANT_LEAVE and event.call_sid:
            participant = _participant_by_call_sid(conference, event.call_sid)
            if participant is not None:
                participant.mark_left(ts)

        # conference-start: the row is only created once the carrier has
        # confirmed the conference, so it is already active


def _find_internal_call(db: Session, conference_sid: str, friendly_name: Optional[str]) -> Optional[InternalCall]:
    clauses = [InternalCall.conference_sid == conference_sid]
    if friendly_name:
        clauses.append(InternalCall.conference_name == friendly_name)
    return db.query(InternalCall).filter(or_(*clauses)).first()


def handle_conference_event(db: Session, event: ConferenceStatusCallback) -> WebhookOutcome:
    """Single entry point for conference status callbacks."""
    row = record_carrier_event(db, event)
    if row is None:
        logger.info(
            "Duplicate %s for %s ignored",
            event.StatusCallbackEvent,
            event.ConferenceSid,
        )
        return WebhookOutcome(status="duplicate")

    events = ordered_events(db, event.ConferenceSid)
    outcome = WebhookOutcome(status="unmatched", event_id=row.id)

    internal_call = _find_internal_call(db, event.ConferenceSid, event.FriendlyName)
    if internal_call is not None:
        if internal_call.conference_sid is None:
            internal_call.conference_sid = event.ConferenceSid
        apply_internal_call_events(db, internal_call, events)
        outcome.internal_call_id = internal_call.id
        outcome.status = "applied"

    conference = db.query(ConferenceCall).filter_by(conference_sid=event.ConferenceSid).first()
    if conference is not None:
        apply_conference_events(db, conference, events)
        outcome.conference_id = conference.id
        outcome.status = "applied"

    db.commit()

    if outcome.status == "unmatched":
        # kept in the ledger; replayed once the session row exists
        logger.info(
            "No session yet for %s (%s), event %s kept for replay",
            event.ConferenceSid,
            event.FriendlyName,
            event.StatusCallbackEvent,
        )
    return outcome


def replay_conference_events(db: Session, conference: ConferenceCall) -> None:
    """Fold ledger events that arrived before the conference row was written."""
    events = ordered_events(db, conference.conference_sid)
    if not events:
        return
    apply_conference_events(db, conference, events)
    db.commit()

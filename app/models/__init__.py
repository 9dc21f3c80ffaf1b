# app/models/__init__.py
from app.models.base import Base  # noqa: F401

from app.models.extension import Extension  # noqa: F401
from app.models.presence import UserPresence  # noqa: F401
from app.models.forwarding_rule import CallForwardingRule  # noqa: F401
from app.models.internal_call import InternalCall  # noqa: F401
from app.models.conference import ConferenceCall, ConferenceParticipant  # noqa: F401
from app.models.call import PhoneCallLog  # noqa: F401
from app.models.voicemail import Voicemail  # noqa: F401
from app.models.carrier_event import CarrierEvent  # noqa: F401
from app.models.recording import CallRecording  # noqa: F401

# app/services/twiml.py
"""TwiML fragments shared by the IVR, conference and transfer flows."""
from typing import Optional

from twilio.twiml.voice_response import VoiceResponse

from app.config import get_settings

VOICE = "alice"
CONFERENCE_EVENTS = "start end join leave"
CONFERENCE_STATUS_PATH = "/twilio/conference-status"


def say(vr: VoiceResponse, message: str) -> None:
    vr.say(message, voice=VOICE)


def add_operator_fallback(vr: VoiceResponse, message: str = "Connecting you to an operator.") -> None:
    settings = get_settings()
    say(vr, message)
    vr.dial(settings.OPERATOR_NUMBER)


def add_voicemail(vr: VoiceResponse, extension_id: Optional[int] = None) -> None:
    """Record a message with transcription; callbacks feed the voicemail sink."""
    settings = get_settings()
    query = f"?extension_id={extension_id}" if extension_id is not None else ""
    say(vr, "Please leave a message after the beep.")
    vr.record(
        action="/twilio/voicemail/complete",
        method="POST",
        max_length=settings.VOICEMAIL_MAX_LENGTH,
        timeout=10,
        play_beep=True,
        transcribe=True,
        transcribe_callback=f"/twilio/voicemail/transcription{query}",
        recording_status_callback="/twilio/voicemail/recording",
        recording_status_callback_method="POST",
    )
    say(vr, "We didn't receive your message. Goodbye.")


def add_conference(
    vr: VoiceResponse,
    conference_name: str,
    *,
    start_on_enter: bool,
    end_on_exit: bool,
    relative_callbacks: bool = True,
) -> None:
    """
    Relative callback paths only resolve for TwiML the carrier fetched from
    us; TwiML pushed through the REST API needs `PUBLIC_BASE_URL`.
    """
    settings = get_settings()
    dial = vr.dial()
    kwargs = {}
    status_callback = settings.callback_url(CONFERENCE_STATUS_PATH)
    if status_callback is None and relative_callbacks:
        status_callback = CONFERENCE_STATUS_PATH
    if status_callback:
        kwargs = {
            "status_callback": status_callback,
            "status_callback_event": CONFERENCE_EVENTS,
            "status_callback_method": "POST",
        }
    dial.conference(
        conference_name,
        beep=True,
        start_conference_on_enter=start_on_enter,
        end_conference_on_exit=end_on_exit,
        wait_url=settings.HOLD_MUSIC_URL,
        **kwargs,
    )


def conference_twiml(
    conference_name: str,
    *,
    start_on_enter: bool,
    end_on_exit: bool,
    announcement: Optional[str] = None,
) -> str:
    vr = VoiceResponse()
    if announcement:
        say(vr, announcement)
    add_conference(
        vr,
        conference_name,
        start_on_enter=start_on_enter,
        end_on_exit=end_on_exit,
        relative_callbacks=False,
    )
    return str(vr)


def dial_number_twiml(number: str, announcement: Optional[str] = None) -> str:
    vr = VoiceResponse()
    if announcement:
        say(vr, announcement)
    dial = vr.dial()
    dial.number(number)
    return str(vr)

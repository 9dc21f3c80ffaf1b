# app/config.py
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENV: str = "dev"
    APP_NAME: str = "MPT Phone Call Routing Engine"
    LOG_LEVEL: str = "INFO"

    # DB URL – SQLite local by default
    DATABASE_URL: str = "sqlite:///./pbx.db"

    # Twilio config
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None  # our Twilio caller ID
    TWILIO_VALIDATE_SIGNATURES: bool = False

    # Absolute base URL of this service, used for callbacks embedded in
    # TwiML that is pushed through the REST API (no request to resolve against)
    PUBLIC_BASE_URL: Optional[str] = None

    # Routing policy
    COMPANY_NAME: str = "Metro Point Technology"
    OPERATOR_NUMBER: str = "+12399661917"
    TRANSFER_ALLOWED_NUMBER: str = "+12399661917"
    DEFAULT_COUNTRY_CODE: str = "1"
    DEFAULT_TENANT_ID: int = 1
    CLIENT_IDENTITY_PREFIX: str = "user-"
    HOLD_MUSIC_URL: str = "http://twimlets.com/holdmusic?Bucket=com.twilio.music.ambient"

    # Timers (seconds unless noted)
    IVR_GATHER_TIMEOUT: int = 10
    EXTENSION_DIAL_TIMEOUT: int = 25
    RING_CYCLE_SECONDS: int = 6
    VOICEMAIL_MAX_LENGTH: int = 120
    PRESENCE_STALE_SECONDS: int = 300
    CARRIER_API_TIMEOUT_SECONDS: float = 10.0
    CONFERENCE_LOOKUP_RETRIES: int = 5
    CONFERENCE_LOOKUP_DELAY_SECONDS: float = 0.5
    PENDING_SESSION_TTL_SECONDS: int = 120

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def callback_url(self, path: str) -> Optional[str]:
        """Absolute URL for a carrier callback, or None when no public base is set."""
        if not self.PUBLIC_BASE_URL:
            return None
        return self.PUBLIC_BASE_URL.rstrip("/") + path


_settings: Optional[Settings] = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

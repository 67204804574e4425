"""
Environment-based configuration.

All runtime configuration is read from environment variables (optionally
seeded from a ``.env`` file) into a single pydantic model so that the rest
of the application receives one typed, validated object instead of calling
``os.getenv`` all over the place.
"""

import os
import re
from datetime import timedelta, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from voice_gateway.config.constants import (
    DEFAULT_REALTIME_MODEL,
    DEFAULT_SUMMARY_MODEL,
    DEFAULT_TRANSCRIPTION_MODEL,
    DEFAULT_VOICE,
)
from voice_gateway.errors import ConfigurationError

# Secrets the gateway cannot serve a single call without
REQUIRED_SETTINGS = {
    "twilio_account_sid": "TWILIO_ACCOUNT_SID",
    "twilio_auth_token": "TWILIO_AUTH_TOKEN",
    "phone_number_from": "PHONE_NUMBER_FROM",
    "domain": "DOMAIN",
    "openai_api_key": "OPENAI_API_KEY",
}


class Settings(BaseModel):
    """Typed view over the process environment."""

    openai_api_key: Optional[str] = None
    realtime_model: str = DEFAULT_REALTIME_MODEL
    transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL
    summary_model: str = DEFAULT_SUMMARY_MODEL
    voice: str = DEFAULT_VOICE

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_api_key_sid: Optional[str] = None
    twilio_api_key_secret: Optional[str] = None
    twilio_twiml_app_sid: Optional[str] = None
    phone_number_from: Optional[str] = None
    domain: Optional[str] = None

    host: str = "0.0.0.0"
    port: int = 6060

    owner_phone: Optional[str] = None
    owner_name: str = "Paul"
    owner_email: Optional[str] = None
    assistant_name: str = "Henry"
    assistant_email: Optional[str] = None
    safe_word: str = ""
    web_client_identity: str = "owner-web"

    workspace_dir: Path = Field(default_factory=lambda: Path.home() / "assistant")
    cache_path: Optional[Path] = None
    call_history_path: Optional[Path] = None
    transcripts_dir: Optional[Path] = None
    telegram_transcript_path: Optional[Path] = None
    log_file: Optional[Path] = None
    log_level: str = "INFO"

    toodledo_access_token: Optional[str] = None
    task_assistant_context_id: Optional[int] = None

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    calendar_id: Optional[str] = None
    calendar_utc_offset: str = "-08:00"

    brave_api_key: Optional[str] = None

    @field_validator("domain")
    def normalize_domain(cls, v):
        """Strip any scheme and trailing slashes so the value can prefix wss:// URLs."""
        if v is None:
            return v
        return re.sub(r"/+$", "", re.sub(r"^(\w+:|)//", "", v.strip()))

    # Derived paths default to locations inside the workspace directory

    @property
    def resolved_cache_path(self) -> Path:
        return self.cache_path or self.workspace_dir / "voice-realtime" / "data-cache.json"

    @property
    def resolved_call_history_path(self) -> Path:
        return self.call_history_path or self.workspace_dir / "voice-realtime" / "call-history.json"

    @property
    def resolved_transcripts_dir(self) -> Path:
        return self.transcripts_dir or self.workspace_dir / "memory" / "voice-calls"

    @property
    def resolved_log_file(self) -> Path:
        return self.log_file or self.workspace_dir / "voice-realtime" / "logs" / "voice_gateway.log"

    @property
    def memory_dir(self) -> Path:
        return self.workspace_dir / "memory"

    @property
    def longterm_memory_path(self) -> Path:
        return self.workspace_dir / "MEMORY.md"

    @property
    def identity_path(self) -> Path:
        return self.workspace_dir / "IDENTITY.md"

    @property
    def voice_requests_log(self) -> Path:
        return self.workspace_dir / "voice-requests.log"

    @property
    def media_stream_url(self) -> str:
        return f"wss://{self.domain}/media-stream"

    @property
    def local_timezone(self) -> timezone:
        """Fixed-offset zone parsed from ``calendar_utc_offset`` (e.g. ``-08:00``)."""
        match = re.fullmatch(r"([+-])(\d\d):?(\d\d)", self.calendar_utc_offset.strip())
        if not match:
            return timezone.utc
        sign, hours, minutes = match.groups()
        delta = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-delta if sign == "-" else delta)

    @property
    def attribution_label(self) -> str:
        """Label stamped on every write the assistant makes to external systems."""
        return f"Voice{self.assistant_name}"

    def missing_required(self) -> List[str]:
        """Return the environment variable names of required settings that are unset."""
        return [env for attr, env in REQUIRED_SETTINGS.items() if not getattr(self, attr)]

    def validate_required(self) -> None:
        """
        Raise ConfigurationError if any required secret is missing.

        Raises:
            ConfigurationError: listing every missing environment variable
        """
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing environment variables: {', '.join(missing)}. Check .env file."
            )

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from ``os.environ`` (or the given mapping)."""
        env = os.environ if environ is None else environ

        def _get(name, default=None):
            value = env.get(name)
            return value if value not in (None, "") else default

        values = {
            "openai_api_key": _get("OPENAI_API_KEY"),
            "realtime_model": _get("OPENAI_REALTIME_MODEL", DEFAULT_REALTIME_MODEL),
            "transcription_model": _get("OPENAI_TRANSCRIPTION_MODEL", DEFAULT_TRANSCRIPTION_MODEL),
            "summary_model": _get("OPENAI_SUMMARY_MODEL", DEFAULT_SUMMARY_MODEL),
            "voice": _get("OPENAI_VOICE", DEFAULT_VOICE),
            "twilio_account_sid": _get("TWILIO_ACCOUNT_SID"),
            "twilio_auth_token": _get("TWILIO_AUTH_TOKEN"),
            "twilio_api_key_sid": _get("TWILIO_API_KEY_SID"),
            "twilio_api_key_secret": _get("TWILIO_API_KEY_SECRET"),
            "twilio_twiml_app_sid": _get("TWILIO_TWIML_APP_SID"),
            "phone_number_from": _get("PHONE_NUMBER_FROM"),
            "domain": _get("DOMAIN"),
            "host": _get("HOST", "0.0.0.0"),
            "port": int(_get("PORT", "6060")),
            "owner_phone": _get("OWNER_PHONE"),
            "owner_name": _get("OWNER_NAME", "Paul"),
            "owner_email": _get("OWNER_EMAIL"),
            "assistant_name": _get("ASSISTANT_NAME", "Henry"),
            "assistant_email": _get("ASSISTANT_EMAIL"),
            "safe_word": _get("SAFE_WORD", ""),
            "web_client_identity": _get("WEB_CLIENT_IDENTITY", "owner-web"),
            "cache_path": _get("CACHE_PATH"),
            "call_history_path": _get("CALL_HISTORY_PATH"),
            "transcripts_dir": _get("TRANSCRIPTS_DIR"),
            "telegram_transcript_path": _get("TELEGRAM_TRANSCRIPT_PATH"),
            "log_file": _get("LOG_FILE"),
            "log_level": _get("LOG_LEVEL", "INFO"),
            "toodledo_access_token": _get("TOODLEDO_ACCESS_TOKEN"),
            "task_assistant_context_id": _get("TASK_ASSISTANT_CONTEXT_ID"),
            "google_client_id": _get("GOOGLE_CLIENT_ID"),
            "google_client_secret": _get("GOOGLE_CLIENT_SECRET"),
            "google_refresh_token": _get("GOOGLE_REFRESH_TOKEN"),
            "calendar_id": _get("CALENDAR_ID"),
            "calendar_utc_offset": _get("CALENDAR_UTC_OFFSET", "-08:00"),
            "brave_api_key": _get("BRAVE_API_KEY"),
        }
        workspace = _get("WORKSPACE_DIR")
        if workspace:
            values["workspace_dir"] = Path(workspace).expanduser()
        return cls(**values)

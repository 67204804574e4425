"""
Call state for the voice gateway.

A ``Call`` is one admitted telephone or browser session. It is created when the
inbound webhook (or an outbound trigger) is admitted, populated when the media
stream starts, and persisted as a ``CallHistoryEntry`` plus a transcript file
when the media stream closes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from voice_gateway.bot.modes import ConversationModeName
from voice_gateway.config.constants import WEB_CLIENT_PREFIX


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Speaker(str, Enum):
    """Who said a transcript line."""
    CALLER = "caller"
    ASSISTANT = "assistant"


class TranscriptLine(BaseModel):
    """One speaker-tagged utterance."""

    speaker: Speaker
    text: str

    def render(self, assistant_name: str) -> str:
        tag = "CALLER" if self.speaker == Speaker.CALLER else assistant_name.upper()
        return f"[{tag}] {self.text}"


class Call(BaseModel):
    """Mutable state of the single active call."""

    caller: str
    started_at: datetime = Field(default_factory=utcnow)
    is_web_client: bool = False
    stream_sid: Optional[str] = None
    mode: ConversationModeName = ConversationModeName.STANDUP
    transcript: List[TranscriptLine] = Field(default_factory=list)

    @classmethod
    def for_caller(cls, caller: str, started_at: Optional[datetime] = None) -> "Call":
        return cls(
            caller=caller,
            started_at=started_at or utcnow(),
            is_web_client=caller.startswith(WEB_CLIENT_PREFIX),
        )

    @property
    def stream_started(self) -> bool:
        return self.stream_sid is not None

    def add_line(self, speaker: Speaker, text: str) -> TranscriptLine:
        line = TranscriptLine(speaker=speaker, text=text)
        self.transcript.append(line)
        return line

    def render_transcript(self, assistant_name: str) -> List[str]:
        return [line.render(assistant_name) for line in self.transcript]

    def duration_seconds(self, ended_at: Optional[datetime] = None) -> int:
        ended_at = ended_at or utcnow()
        return max(0, int((ended_at - self.started_at).total_seconds()))


class CallHistoryEntry(BaseModel):
    """Immutable summary of a finished call, as stored in the history document."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime
    duration: int
    caller: str
    transcript_lines: int = Field(alias="transcriptLines")

    @field_validator("timestamp")
    def assume_utc(cls, v):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    def to_json(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration,
            "caller": self.caller,
            "transcriptLines": self.transcript_lines,
        }

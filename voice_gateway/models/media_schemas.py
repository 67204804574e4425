"""
Pydantic models for the Twilio Media Streams WebSocket protocol.

Inbound frames are ``connected``, ``start``, ``media``, ``mark`` and ``stop``
events; the gateway sends ``media`` (assistant audio) and ``clear`` (drop any
queued playback) frames back. Audio frames in both directions skip model
validation and are handled as plain dicts to keep per-frame latency low.
"""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class StreamStart(BaseModel):
    """Body of the ``start`` event."""

    model_config = ConfigDict(extra="allow")

    streamSid: str = Field(..., description="Identifier of this media stream")
    callSid: Optional[str] = None
    accountSid: Optional[str] = None
    customParameters: Dict[str, str] = Field(default_factory=dict)

    @property
    def caller_number(self) -> Optional[str]:
        return self.customParameters.get("callerNumber") or None


class StartMessage(BaseModel):
    """The ``start`` frame, sent once when the carrier opens the stream."""

    model_config = ConfigDict(extra="allow")

    event: Literal["start"]
    streamSid: Optional[str] = None
    start: StreamStart


class ClearMessage(BaseModel):
    """Tells the carrier to discard any audio queued for playback."""

    event: Literal["clear"] = "clear"
    streamSid: Optional[str]


def media_frame(stream_sid: Optional[str], payload: str) -> dict:
    """Outgoing assistant audio frame."""
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}

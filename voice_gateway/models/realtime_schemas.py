"""
Pydantic models for OpenAI Realtime API message structures.

This module provides type-safe models for the realtime events the relay
consumes (function calls, transcripts) and small builders for the client
events it sends (conversation items, turn detection).
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from voice_gateway.config.constants import (
    EVENT_CONVERSATION_ITEM_CREATE,
    TURN_DETECTION_PREFIX_PADDING_MS,
    TURN_DETECTION_THRESHOLD,
    TURN_DETECTION_TYPE,
)


class RealtimeBaseMessage(BaseModel):
    """Base model for Realtime API server events."""

    model_config = ConfigDict(extra="allow")

    type: str
    event_id: Optional[str] = None


class FunctionCallArgumentsDone(RealtimeBaseMessage):
    """The model finished streaming the arguments of a tool call."""

    type: str = "response.function_call_arguments.done"
    name: str
    call_id: str
    arguments: str = "{}"


class TranscriptEvent(RealtimeBaseMessage):
    """Completed transcript of either the caller's or the assistant's speech."""

    transcript: Optional[str] = None
    item_id: Optional[str] = None


class RealtimeErrorMessage(RealtimeBaseMessage):
    """Error event from the Realtime API."""

    type: str = "error"
    error: Dict[str, Any] = Field(default_factory=dict)


class TurnDetection(BaseModel):
    """Server-side voice activity detection parameters."""

    type: str = TURN_DETECTION_TYPE
    threshold: float = TURN_DETECTION_THRESHOLD
    prefix_padding_ms: int = TURN_DETECTION_PREFIX_PADDING_MS
    silence_duration_ms: int


def user_text_item(text: str) -> dict:
    """A ``conversation.item.create`` event carrying a user text message."""
    return {
        "type": EVENT_CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def function_call_output_item(call_id: str, output: str) -> dict:
    """A ``conversation.item.create`` event returning a tool result."""
    return {
        "type": EVENT_CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": output,
        },
    }

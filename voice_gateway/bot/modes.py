"""
Conversation modes and the cue detector that switches between them.

Two turn-detection profiles exist. ``standup`` ends the caller's turn after a
short silence for quick back-and-forth; ``reflective`` waits much longer so the
caller can think out loud without being interrupted. The caller switches modes
just by saying so, e.g. "let me think" or "speed up".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class ConversationModeName(str, Enum):
    STANDUP = "standup"
    REFLECTIVE = "reflective"


@dataclass(frozen=True)
class ConversationMode:
    name: ConversationModeName
    silence_duration_ms: int
    announcement: str


MODES: Dict[ConversationModeName, ConversationMode] = {
    ConversationModeName.STANDUP: ConversationMode(
        name=ConversationModeName.STANDUP,
        silence_duration_ms=900,
        announcement="Switching to standup mode, quick and responsive.",
    ),
    ConversationModeName.REFLECTIVE: ConversationMode(
        name=ConversationModeName.REFLECTIVE,
        silence_duration_ms=2500,
        announcement="Switching to reflective mode. I'll give you more space to think.",
    ),
}

DEFAULT_MODE = ConversationModeName.STANDUP

REFLECTIVE_CUES: Tuple[str, ...] = (
    "slow down",
    "slow it down",
    "reflective",
    "let me think",
    "give me a moment",
    "give me a minute",
    "mellow mode",
    "reflective mode",
    "thinking mode",
    "take it slow",
    "be more patient",
    "more time to think",
    "brainstorm",
    "let's think",
    "stop interrupt",
    "quit interrupt",
    "don't interrupt",
    "let me finish",
    "hold on",
    "wait a sec",
)

STANDUP_CUES: Tuple[str, ...] = (
    "standup mode",
    "speed up",
    "quick mode",
    "back to normal",
    "fast mode",
    "let's move",
    "pick up the pace",
)


def _normalize(text: str) -> str:
    # Transcribers emit typographic apostrophes ("let’s think")
    return text.lower().replace("’", "'")


def detect_mode_switch(
    text: str, current: ConversationModeName
) -> Optional[ConversationModeName]:
    """
    Return the mode a caller utterance asks for, or None if it asks for no change.

    Reflective cues are checked first, so a line containing cues for both
    modes resolves to reflective. A cue for the mode already active is ignored.

    Args:
        text: One completed caller transcript line
        current: The call's active mode

    Returns:
        The new mode, or None
    """
    if not text:
        return None
    lower = _normalize(text)
    if current != ConversationModeName.REFLECTIVE:
        if any(cue in lower for cue in REFLECTIVE_CUES):
            return ConversationModeName.REFLECTIVE
    if current != ConversationModeName.STANDUP:
        if any(cue in lower for cue in STANDUP_CUES):
            return ConversationModeName.STANDUP
    return None

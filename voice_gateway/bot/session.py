"""
Builders for the realtime session configuration.

The first ``session.update`` of a call decides what the model may do: a
trusted caller gets the full instructions and the tool catalog, anyone else
gets a locked-down prompt that asks for the safe word and no tools at all.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from voice_gateway.bot.modes import MODES, ConversationModeName
from voice_gateway.config.constants import (
    AUDIO_FORMAT_PCMU,
    EVENT_SESSION_UPDATE,
    LOGGER_NAME,
    UNKNOWN_CALLER,
    WEB_CLIENT_PREFIX,
)
from voice_gateway.config.settings import Settings
from voice_gateway.models.realtime_schemas import TurnDetection, user_text_item
from voice_gateway.tools.catalog import TOOLS

logger = logging.getLogger(LOGGER_NAME)

SYSTEM_PROMPT = """You are {assistant}, a sharp and capable AI assistant on a phone call with {owner}.
Be concise, helpful, and conversational.
Keep responses brief. This is voice, not text.

{identity}--- CRITICAL RULES ---

1. NO DEAD AIR: You MUST speak BEFORE every tool call. Say "Let me check that" or "One moment". NEVER go silent.

2. NO DUPLICATE TASKS: When {owner} discusses an existing task, search first with search_tasks, then use update_task_note. Only use add_task for genuinely NEW tasks.

3. NEVER HALLUCINATE: You cannot see chat messages or images directly. Use get_telegram_context if {owner} asks about recent chat. If you don't have data, say so.

4. HONEST FAILURE OVER FAKE SUCCESS: If a tool fails or returns an error, SAY SO. Never pretend something worked when it didn't.

5. TASK CONFIRMATION: Read back task details and get a verbal "yes" before creating. EXCEPTION: if {owner} says "just do it" or "put it in", submit immediately.

6. SEARCH TIP: Voice transcription may garble task names. Try short keywords. Task titles often start with "{assistant}:".

--- TOOLS ---
READ tools (weather, calendar, tasks_due, get_briefing) use cached data for speed.
WRITE tools (add_task, update_task_note, calendar changes) use live APIs.
search_tasks and get_task always use the live API for accuracy.

--- TASK TRIAGE MODE ---
When {owner} says "let's do triage" or "triage time", use triage_tasks to get the next batch.
Present tasks ONE AT A TIME. For each task, read: title, age, due date, note preview.
Then ask: "Do it, delegate, defer, delete, or need detail?"

THE 5 D's:
- DO IT: schedule_task to set a due date
- DELEGATE: delegate_task to assign to {assistant} (overnight processing)
- DEFER: defer_task to move to Someday (removes date, tags Deferred)
- DELETE: mark_obsolete to complete and tag as obsolete
- DETAIL: get_task to read the full note

After any decision, the task is marked as triaged. Move to the next task.
Keep the pace steady. {owner} drives, you execute."""

LOCKDOWN_PROMPT = """You are {assistant}. This call is from an UNVERIFIED caller ({caller}).

SECURITY: Ask for the safe word before proceeding. The safe word is: "{safe_word}". The caller must say it first.
Until verified: share ZERO personal info, don't confirm or deny anything, keep responses short.
If they provide the correct safe word, say "Identity verified, welcome!" and proceed normally."""


def is_trusted_caller(caller: Optional[str], owner_phone: Optional[str]) -> bool:
    """The owner's own number, or the authenticated browser client."""
    if not caller or caller == UNKNOWN_CALLER:
        return False
    if caller.startswith(WEB_CLIENT_PREFIX):
        return True
    return bool(owner_phone) and caller == owner_phone


def load_identity(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip() if path.exists() else ""
    except OSError as e:
        logger.warning(f"Could not read identity file {path}: {e}")
        return ""


def build_system_message(settings: Settings) -> str:
    identity = load_identity(settings.identity_path)
    identity_block = f"--- YOUR IDENTITY ---\n{identity}\n\n" if identity else ""
    return SYSTEM_PROMPT.format(
        assistant=settings.assistant_name, owner=settings.owner_name, identity=identity_block
    )


def build_lockdown_instructions(settings: Settings, caller: str) -> str:
    return LOCKDOWN_PROMPT.format(
        assistant=settings.assistant_name, caller=caller, safe_word=settings.safe_word
    )


def turn_detection(mode: ConversationModeName) -> Dict[str, Any]:
    return TurnDetection(silence_duration_ms=MODES[mode].silence_duration_ms).model_dump()


def build_session_update(
    settings: Settings, caller: str, mode: ConversationModeName = ConversationModeName.STANDUP
) -> Dict[str, Any]:
    """
    Build the initial ``session.update`` for a call.

    Args:
        settings: Application settings
        caller: Resolved caller identity (phone number, ``client:...`` or ``unknown``)
        mode: Conversation mode whose turn detection applies

    Returns:
        The event, with ``tools``/``tool_choice`` present only for trusted callers
    """
    trusted = is_trusted_caller(caller, settings.owner_phone)
    session: Dict[str, Any] = {
        "type": "realtime",
        "model": settings.realtime_model,
        "output_modalities": ["audio"],
        "audio": {
            "input": {
                "format": {"type": AUDIO_FORMAT_PCMU},
                "transcription": {"model": settings.transcription_model},
                "turn_detection": turn_detection(mode),
            },
            "output": {
                "format": {"type": AUDIO_FORMAT_PCMU},
                "voice": settings.voice,
            },
        },
    }
    if trusted:
        session["instructions"] = build_system_message(settings)
        session["tools"] = TOOLS
        session["tool_choice"] = "auto"
    else:
        session["instructions"] = build_lockdown_instructions(settings, caller)
    return {"type": EVENT_SESSION_UPDATE, "session": session}


def build_turn_detection_update(mode: ConversationModeName) -> Dict[str, Any]:
    """Mid-call ``session.update`` that only changes turn detection."""
    return {
        "type": EVENT_SESSION_UPDATE,
        "session": {
            "type": "realtime",
            "audio": {"input": {"turn_detection": turn_detection(mode)}},
        },
    }


def greeting_instruction(settings: Settings, trusted: bool) -> str:
    if trusted:
        return f'Greet {settings.owner_name} with just: "{settings.owner_name}!"'
    return (
        f'Say: "Hello, this is {settings.assistant_name}. '
        'Please provide the safe word to continue."'
    )


def build_greeting(settings: Settings, trusted: bool) -> Dict[str, Any]:
    return user_text_item(greeting_instruction(settings, trusted))


def build_mode_announcement(mode: ConversationModeName) -> Dict[str, Any]:
    return user_text_item(f"[SYSTEM] {MODES[mode].announcement}")

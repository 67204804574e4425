"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for protocol event names, fixed turn-detection
parameters and persistence limits.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_gateway"

# Default OpenAI models for the Realtime API session
DEFAULT_REALTIME_MODEL = "gpt-realtime"
DEFAULT_TRANSCRIPTION_MODEL = "gpt-4o-mini-transcribe"
DEFAULT_SUMMARY_MODEL = "gpt-4o-mini"
DEFAULT_VOICE = "alloy"

REALTIME_URL = "wss://api.openai.com/v1/realtime"

# G.711 mu-law, 8 kHz mono, as carried by Twilio Media Streams
AUDIO_FORMAT_PCMU = "audio/pcmu"

# Fixed turn-detection parameters; only the silence duration varies by mode
TURN_DETECTION_TYPE = "server_vad"
TURN_DETECTION_THRESHOLD = 0.75
TURN_DETECTION_PREFIX_PADDING_MS = 300

# Media stream (Twilio) event names
MEDIA_EVENT_START = "start"
MEDIA_EVENT_MEDIA = "media"
MEDIA_EVENT_STOP = "stop"
MEDIA_EVENT_CLEAR = "clear"

# Realtime API client events
EVENT_SESSION_UPDATE = "session.update"
EVENT_CONVERSATION_ITEM_CREATE = "conversation.item.create"
EVENT_INPUT_AUDIO_APPEND = "input_audio_buffer.append"
EVENT_RESPONSE_CREATE = "response.create"
EVENT_RESPONSE_CANCEL = "response.cancel"

# Realtime API server events
EVENT_AUDIO_DELTA = "response.output_audio.delta"
EVENT_AUDIO_DELTA_LEGACY = "response.audio.delta"
EVENT_RESPONSE_DONE = "response.done"
EVENT_SPEECH_STARTED = "input_audio_buffer.speech_started"
EVENT_INPUT_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
EVENT_OUTPUT_TRANSCRIPT_DONE = "response.output_audio_transcript.done"
EVENT_OUTPUT_TRANSCRIPT_DONE_LEGACY = "response.audio_transcript.done"
EVENT_FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
EVENT_ERROR = "error"

# Server events worth an info-level log line
LOG_EVENT_TYPES = frozenset(
    [
        EVENT_ERROR,
        "response.content.done",
        "rate_limits.updated",
        EVENT_RESPONSE_DONE,
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_stopped",
        EVENT_SPEECH_STARTED,
        "session.created",
        "session.updated",
        EVENT_FUNCTION_CALL_ARGUMENTS_DONE,
        EVENT_INPUT_TRANSCRIPTION_COMPLETED,
        EVENT_OUTPUT_TRANSCRIPT_DONE_LEGACY,
        EVENT_OUTPUT_TRANSCRIPT_DONE,
    ]
)

# Callers dialing from the browser client carry this prefix
WEB_CLIENT_PREFIX = "client:"
UNKNOWN_CALLER = "unknown"

# Call lifecycle
MAX_CALL_HISTORY = 500
STALE_CALL_SECONDS = 120
WATCHDOG_INTERVAL_SECONDS = 10
STREAM_START_WAIT_SECONDS = 2.0

# Cache snapshot freshness window
CACHE_MAX_AGE_SECONDS = 30 * 60

# Tool output limits
MAX_TOOL_OUTPUT_CHARS = 4000
MAX_TOOL_ERROR_CHARS = 100

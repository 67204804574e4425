"""
Per-call relay between the Twilio media stream and the OpenAI Realtime API.

Caller audio arrives as base64 mu-law ``media`` frames and is forwarded to the
model verbatim; model audio deltas are forwarded back the same way. On top of
the audio path the relay handles barge-in, transcript collection, mode
switching and the tool-call protocol.

Tasks per call:
- the downstream receive loop (driven by ``MediaStreamManager``)
- an upstream task that connects, negotiates the session and starts the pump
- the upstream event pump
- a sequential tool worker fed by a queue, so audio keeps flowing while a
  tool runs
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from voice_gateway.bot.modes import MODES, ConversationModeName, detect_mode_switch
from voice_gateway.bot.realtime_api import RealtimeEventClient
from voice_gateway.bot.session import (
    build_greeting,
    build_mode_announcement,
    build_session_update,
    build_turn_detection_update,
    is_trusted_caller,
)
from voice_gateway.call_lifecycle import CallLifecycleManager
from voice_gateway.config.constants import (
    EVENT_AUDIO_DELTA,
    EVENT_AUDIO_DELTA_LEGACY,
    EVENT_ERROR,
    EVENT_FUNCTION_CALL_ARGUMENTS_DONE,
    EVENT_INPUT_AUDIO_APPEND,
    EVENT_INPUT_TRANSCRIPTION_COMPLETED,
    EVENT_OUTPUT_TRANSCRIPT_DONE,
    EVENT_OUTPUT_TRANSCRIPT_DONE_LEGACY,
    EVENT_RESPONSE_CANCEL,
    EVENT_RESPONSE_CREATE,
    EVENT_RESPONSE_DONE,
    EVENT_SPEECH_STARTED,
    LOG_EVENT_TYPES,
    LOGGER_NAME,
    MEDIA_EVENT_MEDIA,
    MEDIA_EVENT_START,
    MEDIA_EVENT_STOP,
    STREAM_START_WAIT_SECONDS,
    UNKNOWN_CALLER,
)
from voice_gateway.config.settings import Settings
from voice_gateway.models.call import Call, Speaker
from voice_gateway.models.media_schemas import ClearMessage, StartMessage, media_frame
from voice_gateway.models.realtime_schemas import (
    FunctionCallArgumentsDone,
    TranscriptEvent,
    function_call_output_item,
)
from voice_gateway.tools.executor import ToolExecutor

logger = logging.getLogger(LOGGER_NAME)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]

RESPONSE_CREATE = {"type": EVENT_RESPONSE_CREATE}
RESPONSE_CANCEL = {"type": EVENT_RESPONSE_CANCEL}


class RealtimeRelay:
    """
    Bridges one media-stream WebSocket to one realtime model session.

    ``is_speaking`` tracks whether model audio is currently being played to
    the caller; it is what decides whether a new caller utterance is a
    barge-in.
    """

    def __init__(
        self,
        websocket: WebSocket,
        call: Call,
        upstream: RealtimeEventClient,
        executor: ToolExecutor,
        lifecycle: CallLifecycleManager,
        settings: Settings,
        stream_start_wait: float = STREAM_START_WAIT_SECONDS,
    ):
        self.websocket = websocket
        self.call = call
        self.upstream = upstream
        self.executor = executor
        self.lifecycle = lifecycle
        self.settings = settings
        self.stream_start_wait = stream_start_wait

        self.is_speaking = False
        self.stream_sid: Optional[str] = None
        self.trusted: Optional[bool] = None
        self.session_ready = asyncio.Event()

        self._stream_started = asyncio.Event()
        self._tool_queue: "asyncio.Queue[FunctionCallArgumentsDone]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._closed = False

        self.handlers: Dict[str, EventHandler] = {
            EVENT_AUDIO_DELTA: self._on_audio_delta,
            EVENT_AUDIO_DELTA_LEGACY: self._on_audio_delta,
            EVENT_RESPONSE_DONE: self._on_response_done,
            EVENT_SPEECH_STARTED: self._on_speech_started,
            EVENT_INPUT_TRANSCRIPTION_COMPLETED: self._on_caller_transcript,
            EVENT_OUTPUT_TRANSCRIPT_DONE: self._on_assistant_transcript,
            EVENT_OUTPUT_TRANSCRIPT_DONE_LEGACY: self._on_assistant_transcript,
            EVENT_FUNCTION_CALL_ARGUMENTS_DONE: self._on_function_call,
            EVENT_ERROR: self._on_error,
        }

    # Lifecycle

    def start(self) -> None:
        """Start the upstream connection and the tool worker in the background."""
        self._tasks.append(asyncio.create_task(self._run_upstream()))
        self._tasks.append(asyncio.create_task(self._tool_worker()))

    async def _run_upstream(self) -> None:
        if not await self.upstream.connect():
            logger.error("Realtime connection failed; media stream stays open without a model")
            return
        self._tasks.append(asyncio.create_task(self._pump_upstream()))
        await self.negotiate_session()

    async def negotiate_session(self) -> None:
        """
        Send the one initial ``session.update`` followed by the greeting.

        Waits briefly for the media stream ``start`` event, which carries the
        caller identity the trust decision depends on.
        """
        try:
            await asyncio.wait_for(self._stream_started.wait(), timeout=self.stream_start_wait)
        except asyncio.TimeoutError:
            logger.warning(
                f"No stream start within {self.stream_start_wait}s; using admitted caller {self.call.caller}"
            )

        caller = self.call.caller or UNKNOWN_CALLER
        self.trusted = is_trusted_caller(caller, self.settings.owner_phone)
        update = build_session_update(self.settings, caller, self.call.mode)
        logger.info(
            f"Sending session update for {'trusted' if self.trusted else 'UNVERIFIED'} caller {caller} "
            f"(instructions: {len(update['session']['instructions'])} chars)"
        )
        await self.upstream.send_event(update)
        await self.upstream.send_event(build_greeting(self.settings, self.trusted))
        await self.upstream.send_event(RESPONSE_CREATE)
        self.session_ready.set()

    async def close(self) -> None:
        """Tear the call down and hand it to the lifecycle manager. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.upstream.close()
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Relay task failed: {result}", exc_info=result)
        await self.lifecycle.finish_call(self.call)

    # Downstream (media stream) side

    async def _send_downstream(self, frame: Dict[str, Any]) -> bool:
        try:
            await self.websocket.send_text(json.dumps(frame))
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Media stream send failed: {e}")
            return False

    async def handle_media_message(self, text: str) -> None:
        """Process one frame from the media stream."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Media stream sent invalid JSON: {text[:100]}...")
            return
        if not isinstance(data, dict):
            logger.warning(f"Media stream sent a non-object frame: {text[:100]}...")
            return

        event = data.get("event")
        # Fast path for audio
        if event == MEDIA_EVENT_MEDIA:
            media = data.get("media")
            if not isinstance(media, dict):
                logger.warning(f"Media frame without a media object: {text[:100]}...")
                return
            payload = media.get("payload")
            if payload and isinstance(payload, str):
                await self.upstream.send_event({"type": EVENT_INPUT_AUDIO_APPEND, "audio": payload})
            return

        if event == MEDIA_EVENT_START:
            try:
                start = StartMessage.model_validate(data).start
            except ValidationError as e:
                logger.error(f"Invalid start frame: {e}")
                return
            self.stream_sid = start.streamSid
            self.lifecycle.mark_stream_started(self.call, start.streamSid, start.caller_number)
            self._stream_started.set()
        elif event == MEDIA_EVENT_STOP:
            logger.info("Stream stopped")
            await self.upstream.close()
        else:
            logger.debug(f"Ignoring media stream event: {event}")

    # Upstream (realtime model) side

    async def _pump_upstream(self) -> None:
        async for event in self.upstream.events():
            await self.handle_realtime_event(event)
        logger.info("Realtime connection ended; media stream stays open")

    async def handle_realtime_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        if not isinstance(event_type, str):
            logger.warning(f"Realtime event without a string type: {str(event)[:100]}...")
            return
        if event_type in LOG_EVENT_TYPES:
            logger.info(f"OpenAI: {event_type}")
        handler = self.handlers.get(event_type)
        if handler is None:
            return
        try:
            await handler(event)
        except ValidationError as e:
            logger.warning(f"Malformed {event_type} event: {e}")
        except Exception as e:
            logger.error(f"Error handling {event_type} event: {e}", exc_info=True)

    async def _on_audio_delta(self, event: Dict[str, Any]) -> None:
        delta = event.get("delta")
        if not delta:
            return
        self.is_speaking = True
        await self._send_downstream(media_frame(self.stream_sid, delta))

    async def _on_response_done(self, event: Dict[str, Any]) -> None:
        self.is_speaking = False

    async def _on_speech_started(self, event: Dict[str, Any]) -> None:
        # Barge-in: the caller started talking over the assistant
        if not self.is_speaking:
            return
        self.is_speaking = False
        logger.info("Barge-in: clearing playback and cancelling response")
        await self._send_downstream(ClearMessage(streamSid=self.stream_sid).model_dump())
        await self.upstream.send_event(RESPONSE_CANCEL)

    async def _on_caller_transcript(self, event: Dict[str, Any]) -> None:
        text = (TranscriptEvent.model_validate(event).transcript or "").strip()
        if not text:
            return
        logger.info(f"CALLER: {text}")
        self.call.add_line(Speaker.CALLER, text)
        new_mode = detect_mode_switch(text, self.call.mode)
        logger.debug(f"Mode check: {new_mode.value if new_mode else 'no match'} (current: {self.call.mode.value})")
        if new_mode is not None:
            await self.switch_mode(new_mode)

    async def _on_assistant_transcript(self, event: Dict[str, Any]) -> None:
        text = (TranscriptEvent.model_validate(event).transcript or "").strip()
        if not text:
            return
        logger.info(f"{self.settings.assistant_name.upper()}: {text}")
        self.call.add_line(Speaker.ASSISTANT, text)

    async def _on_function_call(self, event: Dict[str, Any]) -> None:
        call = FunctionCallArgumentsDone.model_validate(event)
        logger.info(f"Tool: {call.name}({call.arguments})")
        self._tool_queue.put_nowait(call)

    async def _on_error(self, event: Dict[str, Any]) -> None:
        logger.error(f"OpenAI ERROR: {json.dumps(event, indent=2)}")

    async def switch_mode(self, mode: ConversationModeName) -> bool:
        """
        Change turn detection for the rest of the call.

        Returns:
            False if the call is already in ``mode`` (nothing is sent)
        """
        if mode == self.call.mode:
            return False
        self.call.mode = mode
        logger.info(f"Switching to {mode.value} mode (silence: {MODES[mode].silence_duration_ms}ms)")
        await self.upstream.send_event(build_turn_detection_update(mode))
        await self.upstream.send_event(build_mode_announcement(mode))
        await self.upstream.send_event(RESPONSE_CREATE)
        return True

    # Tools

    async def _tool_worker(self) -> None:
        while True:
            call = await self._tool_queue.get()
            try:
                output = await self.run_tool(call)
                logger.info(f"Result: {output[:200]}")
                await self.upstream.send_event(function_call_output_item(call.call_id, output))
                await self.upstream.send_event(RESPONSE_CREATE)
            except Exception as e:
                logger.error(f"Error answering tool call {call.call_id}: {e}", exc_info=True)
            finally:
                self._tool_queue.task_done()

    async def run_tool(self, call: FunctionCallArgumentsDone) -> str:
        if self.trusted is False:
            logger.warning(f"Refusing tool {call.name} on an unverified call")
            return "Error: tools are not available until the caller is verified"
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            return f"Error: invalid tool arguments ({str(e)[:80]})"
        if not isinstance(args, dict):
            return "Error: tool arguments must be a JSON object"
        return await self.executor.execute(call.name, args)

    async def wait_for_tools(self) -> None:
        """Block until every queued tool call has been answered."""
        await self._tool_queue.join()

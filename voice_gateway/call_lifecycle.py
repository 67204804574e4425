"""
Call admission, teardown bookkeeping and call history.

The gateway serves one call at a time. ``CallLifecycleManager`` owns that
single slot: webhooks ask it to admit a caller, the media-stream handler
reports when the stream actually starts, and the relay hands the call back
when the stream closes. A watchdog frees the slot if an admitted call never
opens its media stream.
"""

import asyncio
import json
import logging
import re
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from voice_gateway.config.constants import (
    LOGGER_NAME,
    MAX_CALL_HISTORY,
    STALE_CALL_SECONDS,
    UNKNOWN_CALLER,
    WATCHDOG_INTERVAL_SECONDS,
    WEB_CLIENT_PREFIX,
)
from voice_gateway.models.call import Call, CallHistoryEntry, utcnow
from voice_gateway.services.summarizer import CallSummarizer

logger = logging.getLogger(LOGGER_NAME)


def transcript_filename(started_at: datetime) -> str:
    """``YYYY-MM-DDTHH-MM-SS.txt`` from the call start time."""
    return re.sub(r"[:.]", "-", started_at.isoformat())[:19] + ".txt"


class SlotState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class CallHistory:
    """Chronological list of finished calls, persisted as one JSON array."""

    def __init__(self, path: Path, max_entries: int = MAX_CALL_HISTORY):
        self.path = Path(path)
        self.max_entries = max_entries
        self._entries: List[CallHistoryEntry] = []

    def load(self) -> "CallHistory":
        if not self.path.exists():
            return self
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Call history load error, starting empty: {e}")
            return self
        if not isinstance(raw, list):
            logger.error("Call history is not a JSON array, starting empty")
            return self
        for item in raw:
            try:
                self._entries.append(CallHistoryEntry.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid call history entry: {e}")
        self._entries = self._entries[-self.max_entries:]
        logger.info(f"Loaded {len(self._entries)} call history entries")
        return self

    @property
    def entries(self) -> List[CallHistoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: CallHistoryEntry) -> None:
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            self._entries = self._entries[-self.max_entries:]

    def save(self) -> None:
        """Write the history document; failures are logged, never raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps([e.to_json() for e in self._entries], indent=2), encoding="utf-8"
            )
        except OSError as e:
            logger.error(f"Call history save error: {e}")

    def count_since(self, cutoff: datetime) -> int:
        return sum(1 for e in self._entries if e.timestamp > cutoff)

    def last(self) -> Optional[CallHistoryEntry]:
        return self._entries[-1] if self._entries else None


class CallLifecycleManager:
    """
    Owner of the single active-call slot.

    All methods run on the event loop thread and none of the slot mutations
    await, so admission is atomic without a lock.
    """

    def __init__(
        self,
        history: CallHistory,
        transcripts_dir: Path,
        assistant_name: str,
        summarizer: Optional[CallSummarizer] = None,
        stale_after_seconds: int = STALE_CALL_SECONDS,
        watchdog_interval: float = WATCHDOG_INTERVAL_SECONDS,
    ):
        self.history = history
        self.transcripts_dir = Path(transcripts_dir)
        self.assistant_name = assistant_name
        self.summarizer = summarizer
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.watchdog_interval = watchdog_interval
        self.started_at = utcnow()
        self._active: Optional[Call] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._summary_tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SlotState:
        return SlotState.ACTIVE if self._active is not None else SlotState.IDLE

    @property
    def active_call(self) -> Optional[Call]:
        return self._active

    def try_admit(self, caller: str, now: Optional[datetime] = None) -> Optional[Call]:
        """
        Claim the slot for a new call.

        Returns:
            The new Call, or None when another call holds the slot
        """
        if self._active is not None:
            logger.info(f"BUSY: rejecting {caller}, call from {self._active.caller} in progress")
            return None
        self._active = Call.for_caller(caller or UNKNOWN_CALLER, started_at=now)
        web = " (web client)" if self._active.is_web_client else ""
        logger.info(f"Call admitted from {self._active.caller}{web}")
        return self._active

    def release(self, call: Call) -> bool:
        """Free the slot if, and only if, it still holds ``call``."""
        if self._active is not call:
            return False
        self._active = None
        logger.info(f"Call slot released ({call.caller})")
        return True

    def mark_stream_started(self, call: Call, stream_sid: str, caller: Optional[str] = None) -> None:
        call.stream_sid = stream_sid
        if caller and caller != UNKNOWN_CALLER:
            call.caller = caller
            call.is_web_client = caller.startswith(WEB_CLIENT_PREFIX)
        logger.info(f"Stream started: {stream_sid} (caller {call.caller})")

    def claim_for_stream(self) -> Optional[Call]:
        """
        Call that a newly opened media stream belongs to.

        The admitted call if it has no stream yet; a freshly admitted call if
        the slot is idle (e.g. the watchdog already released a slow call);
        None if another stream is connected.
        """
        active = self._active
        if active is None:
            logger.warning("Media stream opened without an admitted call; admitting now")
            return self.try_admit(UNKNOWN_CALLER)
        if active.stream_started:
            logger.warning(f"Media stream rejected: call {active.stream_sid} already connected")
            return None
        return active

    def release_stale(self, now: Optional[datetime] = None) -> bool:
        """Free the slot iff the active call never started streaming within the limit."""
        call = self._active
        if call is None or call.stream_started:
            return False
        now = now or utcnow()
        if now - call.started_at < self.stale_after:
            return False
        logger.warning(
            f"STALE CALL: auto-releasing {call.caller} after {int((now - call.started_at).total_seconds())}s without a stream"
        )
        self._active = None
        return True

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            self.release_stale()

    def start_watchdog(self) -> None:
        if self._watchdog_task is None or self._watchdog_task.done():
            self._watchdog_task = asyncio.create_task(self._watchdog_loop())

    async def stop_watchdog(self) -> None:
        task, self._watchdog_task = self._watchdog_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("Watchdog stopped")

    def _write_transcript(self, call: Call) -> Path:
        self.transcripts_dir.mkdir(parents=True, exist_ok=True)
        path = self.transcripts_dir / transcript_filename(call.started_at)
        path.write_text("\n".join(call.render_transcript(self.assistant_name)), encoding="utf-8")
        return path

    async def finish_call(self, call: Call, ended_at: Optional[datetime] = None) -> CallHistoryEntry:
        """
        Record a finished call and free its slot.

        Appends and persists the history entry, releases the slot, writes
        the transcript (if any) and schedules a detached summary.
        """
        ended_at = ended_at or utcnow()
        entry = CallHistoryEntry(
            timestamp=ended_at,
            duration=call.duration_seconds(ended_at),
            caller=call.caller,
            transcript_lines=len(call.transcript),
        )
        self.history.append(entry)
        self.release(call)
        await asyncio.to_thread(self.history.save)
        logger.info(f"Call recorded: {entry.caller}, {entry.duration}s, {entry.transcript_lines} lines")

        if call.transcript:
            try:
                path = await asyncio.to_thread(self._write_transcript, call)
            except OSError as e:
                logger.error(f"Transcript save error: {e}")
            else:
                logger.info(f"Transcript saved: {path}")
                self._schedule_summary(path)
        return entry

    def _schedule_summary(self, transcript_path: Path) -> None:
        if self.summarizer is None:
            return
        task = asyncio.create_task(self.summarizer.summarize(transcript_path))
        self._summary_tasks.add(task)
        task.add_done_callback(self._summary_done)

    def _summary_done(self, task: asyncio.Task) -> None:
        self._summary_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Call summary failed: {exc}")

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        call = self._active
        last = self.history.last()
        return {
            "status": "online",
            "activeCalls": 1 if call else 0,
            "activeCall": {
                "caller": call.caller,
                "startTime": call.started_at.isoformat(),
                "duration": call.duration_seconds(now),
            } if call else None,
            "lastCall": last.to_json() if last else None,
            "callsLast24h": self.history.count_since(now - timedelta(days=1)),
            "callsLast7d": self.history.count_since(now - timedelta(days=7)),
            "totalCalls": len(self.history),
            "uptime": int((now - self.started_at).total_seconds()),
        }

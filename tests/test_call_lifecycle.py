import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from voice_gateway.call_lifecycle import (
    CallHistory,
    CallLifecycleManager,
    SlotState,
    transcript_filename,
)
from voice_gateway.errors import ServiceError
from voice_gateway.models.call import CallHistoryEntry, Speaker
from voice_gateway.services.summarizer import CallSummarizer

from conftest import OWNER_PHONE, STRANGER_PHONE

T0 = datetime(2025, 3, 14, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def history(tmp_path):
    return CallHistory(tmp_path / "call-history.json")


@pytest.fixture
def lifecycle(history, tmp_path):
    return CallLifecycleManager(history, tmp_path / "transcripts", "Henry")


def test_transcript_filename():
    started = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
    assert transcript_filename(started) == "2024-01-02T03-04-05.txt"


def test_single_slot_admission(lifecycle):
    """A second caller is turned away while a call holds the slot"""
    first = lifecycle.try_admit(OWNER_PHONE)
    assert first is not None
    assert lifecycle.state == SlotState.ACTIVE

    assert lifecycle.try_admit(STRANGER_PHONE) is None
    assert lifecycle.active_call is first


def test_web_client_flag(lifecycle):
    call = lifecycle.try_admit("client:owner-web")
    assert call.is_web_client


def test_release_only_frees_matching_call(lifecycle):
    first = lifecycle.try_admit(OWNER_PHONE)
    lifecycle.release(first)
    second = lifecycle.try_admit(STRANGER_PHONE)

    assert lifecycle.release(first) is False
    assert lifecycle.active_call is second


def test_claim_for_stream(lifecycle):
    call = lifecycle.try_admit(OWNER_PHONE)
    assert lifecycle.claim_for_stream() is call

    lifecycle.mark_stream_started(call, "MZ123")
    assert lifecycle.claim_for_stream() is None


def test_claim_for_stream_admits_when_idle(lifecycle):
    """A stream that arrives after its call was released still gets a call"""
    call = lifecycle.claim_for_stream()
    assert call is not None
    assert call.caller == "unknown"
    assert lifecycle.active_call is call


def test_mark_stream_started_updates_caller(lifecycle):
    call = lifecycle.try_admit("unknown")
    lifecycle.mark_stream_started(call, "MZ1", "client:owner-web")
    assert call.stream_sid == "MZ1"
    assert call.caller == "client:owner-web"
    assert call.is_web_client


def test_mark_stream_started_keeps_known_caller(lifecycle):
    call = lifecycle.try_admit(OWNER_PHONE)
    lifecycle.mark_stream_started(call, "MZ1", "unknown")
    assert call.caller == OWNER_PHONE


def test_release_stale(lifecycle):
    call = lifecycle.try_admit(OWNER_PHONE, now=T0)

    assert lifecycle.release_stale(now=T0 + timedelta(seconds=119)) is False
    assert lifecycle.active_call is call

    assert lifecycle.release_stale(now=T0 + timedelta(seconds=120)) is True
    assert lifecycle.state == SlotState.IDLE


def test_streaming_call_is_never_stale(lifecycle):
    call = lifecycle.try_admit(OWNER_PHONE, now=T0)
    lifecycle.mark_stream_started(call, "MZ1")
    assert lifecycle.release_stale(now=T0 + timedelta(hours=2)) is False
    assert lifecycle.active_call is call


@pytest.mark.asyncio
async def test_watchdog_releases_stale_call(history, tmp_path):
    lifecycle = CallLifecycleManager(
        history, tmp_path, "Henry", stale_after_seconds=0, watchdog_interval=0.01
    )
    lifecycle.try_admit(OWNER_PHONE)
    lifecycle.start_watchdog()
    try:
        for _ in range(100):
            if lifecycle.state == SlotState.IDLE:
                break
            await asyncio.sleep(0.01)
    finally:
        await lifecycle.stop_watchdog()
    assert lifecycle.state == SlotState.IDLE


@pytest.mark.asyncio
async def test_finish_call_records_history_and_transcript(lifecycle, history, tmp_path):
    call = lifecycle.try_admit(OWNER_PHONE, now=T0)
    call.add_line(Speaker.CALLER, "What's the weather?")
    call.add_line(Speaker.ASSISTANT, "Sunny and mild.")

    entry = await lifecycle.finish_call(call, ended_at=T0 + timedelta(seconds=42))

    assert entry.duration == 42
    assert entry.transcript_lines == 2
    assert lifecycle.state == SlotState.IDLE
    assert len(history) == 1

    saved = json.loads(history.path.read_text(encoding="utf-8"))
    assert saved == [
        {
            "timestamp": (T0 + timedelta(seconds=42)).isoformat(),
            "duration": 42,
            "caller": OWNER_PHONE,
            "transcriptLines": 2,
        }
    ]

    transcript = tmp_path / "transcripts" / "2025-03-14T09-30-00.txt"
    assert transcript.read_text(encoding="utf-8") == "[CALLER] What's the weather?\n[HENRY] Sunny and mild."


@pytest.mark.asyncio
async def test_finish_call_schedules_summary(history, tmp_path):
    summarizer = MagicMock(spec=CallSummarizer)
    lifecycle = CallLifecycleManager(history, tmp_path, "Henry", summarizer=summarizer)
    call = lifecycle.try_admit(OWNER_PHONE, now=T0)
    call.add_line(Speaker.CALLER, "hello")

    await lifecycle.finish_call(call)
    await asyncio.sleep(0.01)

    summarizer.summarize.assert_awaited_once_with(tmp_path / "2025-03-14T09-30-00.txt")


@pytest.mark.asyncio
async def test_summary_failure_is_logged(history, tmp_path, caplog):
    summarizer = MagicMock(spec=CallSummarizer)
    summarizer.summarize = AsyncMock(side_effect=ServiceError("summarizer returned HTTP 500"))
    lifecycle = CallLifecycleManager(history, tmp_path, "Henry", summarizer=summarizer)
    call = lifecycle.try_admit(OWNER_PHONE)
    call.add_line(Speaker.CALLER, "hello")

    await lifecycle.finish_call(call)
    await asyncio.sleep(0.01)

    assert "Call summary failed: summarizer returned HTTP 500" in caplog.text


@pytest.mark.asyncio
async def test_empty_call_writes_no_transcript(history, tmp_path):
    summarizer = MagicMock(spec=CallSummarizer)
    lifecycle = CallLifecycleManager(history, tmp_path / "transcripts", "Henry", summarizer=summarizer)
    call = lifecycle.try_admit(OWNER_PHONE)

    await lifecycle.finish_call(call)

    assert len(history) == 1
    assert not (tmp_path / "transcripts").exists()
    summarizer.summarize.assert_not_called()


def test_history_is_capped(tmp_path):
    history = CallHistory(tmp_path / "h.json", max_entries=3)
    for i in range(5):
        history.append(CallHistoryEntry(timestamp=T0, duration=i, caller=OWNER_PHONE, transcript_lines=0))
    assert len(history) == 3
    assert [e.duration for e in history.entries] == [2, 3, 4]


def test_history_load(tmp_path):
    path = tmp_path / "h.json"
    path.write_text(
        json.dumps(
            [
                {"timestamp": "2025-03-14T09:30:00", "duration": 10, "caller": OWNER_PHONE, "transcriptLines": 4},
                {"timestamp": "not a date", "duration": 1, "caller": "x", "transcriptLines": 0},
            ]
        ),
        encoding="utf-8",
    )
    history = CallHistory(path).load()

    assert len(history) == 1
    assert history.last().timestamp == T0
    assert history.last().transcript_lines == 4


@pytest.mark.parametrize("content", ["{broken", '{"not": "a list"}'])
def test_history_load_unusable_file(tmp_path, content):
    path = tmp_path / "h.json"
    path.write_text(content, encoding="utf-8")
    assert len(CallHistory(path).load()) == 0


def test_status(lifecycle, history):
    now = T0 + timedelta(days=10)
    history.append(CallHistoryEntry(timestamp=now - timedelta(days=8), duration=5, caller="a", transcript_lines=1))
    history.append(CallHistoryEntry(timestamp=now - timedelta(days=2), duration=6, caller="b", transcript_lines=2))
    history.append(CallHistoryEntry(timestamp=now - timedelta(hours=1), duration=7, caller="c", transcript_lines=3))
    lifecycle.try_admit(OWNER_PHONE, now=now - timedelta(seconds=30))

    status = lifecycle.status(now=now)

    assert status["status"] == "online"
    assert status["activeCalls"] == 1
    assert status["activeCall"]["caller"] == OWNER_PHONE
    assert status["activeCall"]["duration"] == 30
    assert status["lastCall"]["caller"] == "c"
    assert status["callsLast24h"] == 1
    assert status["callsLast7d"] == 2
    assert status["totalCalls"] == 3
    assert isinstance(status["uptime"], int)


def test_status_idle(lifecycle):
    status = lifecycle.status()
    assert status["activeCalls"] == 0
    assert status["activeCall"] is None
    assert status["lastCall"] is None
    assert status["totalCalls"] == 0

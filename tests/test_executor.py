import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from voice_gateway.errors import ConfigurationError, ServiceError
from voice_gateway.services.google import CalendarEvent, EmailMessageSummary
from voice_gateway.services.tasks import Task, triage_tag
from voice_gateway.services.web_search import SearchResult
from voice_gateway.tools.cache_reader import CacheReader
from voice_gateway.tools.catalog import ToolName
from voice_gateway.tools.executor import ToolExecutor


def write_cache(path, age=timedelta(minutes=5), **summaries):
    snapshot = {
        "timestamp": (datetime.now(timezone.utc) - age).isoformat(),
        "voiceSummaries": {
            "weather": "Cloudy, 12 degrees.",
            "calendar": {"today": "10am Standup", "tomorrow": "Nothing scheduled"},
            "tasks": "3 tasks due today.",
            "sitting": "4 hours",
            "screenTime": "2 hours",
            "emails": "None",
            "schoolEmails": "Field trip Friday",
            **summaries,
        },
        "data": {
            "calendar": {
                "eventsWithDetails": [
                    {
                        "summary": "Dentist appointment",
                        "start": "2025-03-14T15:00:00-08:00",
                        "location": "12 Main St",
                        "description": "<b>Bring</b> insurance card",
                        "attendees": "Paul",
                    }
                ]
            }
        },
    }
    path.write_text(json.dumps(snapshot), encoding="utf-8")


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "data-cache.json"


@pytest.fixture
def executor(services, settings, cache_path):
    return ToolExecutor(services, CacheReader(cache_path), settings)


def today_tag(settings):
    return triage_tag(datetime.now(settings.local_timezone).date())


def test_registry_covers_catalog(executor):
    """Every published tool has a handler"""
    assert sorted(executor.tool_names) == sorted(t.value for t in ToolName)
    assert len(executor.tool_names) == 28


def test_registry_mismatch_is_fatal(services, settings, cache_path):
    with patch("voice_gateway.tools.executor.catalog_names", return_value=["check_weather"]):
        with pytest.raises(ConfigurationError):
            ToolExecutor(services, CacheReader(cache_path), settings)


@pytest.mark.asyncio
async def test_unknown_tool(executor):
    assert await executor.execute("launch_rockets", {}) == "Unknown tool: launch_rockets"


@pytest.mark.asyncio
async def test_weather_from_cache(executor, services, cache_path):
    write_cache(cache_path)
    assert await executor.execute("check_weather", {}) == "Cloudy, 12 degrees."
    services.weather.current.assert_not_awaited()


@pytest.mark.asyncio
async def test_weather_with_location_is_live(executor, services, cache_path):
    write_cache(cache_path)
    services.weather.current.return_value = "Paris: +15C"
    assert await executor.execute("check_weather", {"location": "Paris"}) == "Paris: +15C"
    services.weather.current.assert_awaited_once_with("Paris")


@pytest.mark.asyncio
async def test_stale_cache_falls_back_to_live(executor, services, cache_path):
    write_cache(cache_path, age=timedelta(hours=2))
    services.weather.current.return_value = "North Vancouver: +9C"
    assert await executor.execute("check_weather", {}) == "North Vancouver: +9C"


@pytest.mark.asyncio
async def test_calendar_from_cache(executor, cache_path):
    write_cache(cache_path)
    result = await executor.execute("check_calendar", {})
    assert result == "TODAY:\n10am Standup\n\nTOMORROW:\nNothing scheduled"


@pytest.mark.asyncio
async def test_calendar_live_without_events(executor, services):
    services.calendar.list_events.return_value = []
    assert await executor.execute("check_calendar", {}) == "No upcoming events."


@pytest.mark.asyncio
async def test_event_details_from_cache(executor, services, cache_path):
    write_cache(cache_path)
    result = await executor.execute("get_event_details", {"query": "dentist"})
    assert result == (
        "EVENT: Dentist appointment\n"
        "WHEN: 2025-03-14T15:00:00-08:00\n"
        "WHERE: 12 Main St\n"
        "DESCRIPTION: Bring insurance card\n"
        "ATTENDEES: Paul\n"
    )
    services.calendar.list_events.assert_not_awaited()


@pytest.mark.asyncio
async def test_event_details_live(executor, services):
    services.calendar.list_events.return_value = [
        CalendarEvent(id="e1", summary="Board meeting", start={"dateTime": "2025-03-15T09:00:00-08:00"})
    ]
    result = await executor.execute("get_event_details", {"query": "board"})
    assert result.startswith("EVENT: Board meeting\nWHEN: 2025-03-15T09:00:00-08:00\n")
    assert "DESCRIPTION: No description set." in result


@pytest.mark.asyncio
async def test_briefing_from_cache(executor, cache_path):
    write_cache(cache_path)
    result = await executor.execute("get_briefing", {})
    assert result.startswith("WEATHER:\nCloudy, 12 degrees.\n\nCALENDAR TODAY:\n10am Standup")
    assert result.endswith("SCHOOL UPDATES:\nField trip Friday")


@pytest.mark.asyncio
async def test_live_briefing_tolerates_failing_section(executor, services):
    services.weather.current.side_effect = ServiceError("weather unreachable")
    services.calendar.list_events.return_value = [
        CalendarEvent(id="e1", summary="Standup", start={"dateTime": "2025-03-14T10:00:00-08:00"})
    ]
    services.tasks.due_within.return_value = []

    result = await executor.execute("get_briefing", {})

    assert "WEATHER:\nUnavailable right now." in result
    assert "CALENDAR:\n2025-03-14T10:00:00-08:00  Standup" in result
    assert "TASKS DUE:\nNo tasks due." in result


@pytest.mark.asyncio
async def test_service_error_is_reported(executor, services):
    services.tasks.find.side_effect = ServiceError("task manager is not configured")
    assert await executor.execute("search_tasks", {"query": "taxes"}) == "Error: task manager is not configured"


@pytest.mark.asyncio
async def test_missing_argument(executor):
    assert await executor.execute("search_tasks", {}) == "Error: missing required argument 'query'"


@pytest.mark.asyncio
async def test_tool_timeout(services, settings, cache_path):
    async def slow(location=None):
        await asyncio.sleep(1)

    services.weather.current.side_effect = slow
    executor = ToolExecutor(
        services, CacheReader(cache_path), settings, timeouts={ToolName.CHECK_WEATHER: 0.01}
    )
    assert await executor.execute("check_weather", {}) == "Error: check_weather timed out after 0.01s"


@pytest.mark.asyncio
async def test_output_is_truncated(executor, services):
    services.weather.current.return_value = "x" * 5000
    assert len(await executor.execute("check_weather", {"location": "Oslo"})) == 4000


@pytest.mark.asyncio
async def test_error_message_is_truncated(executor, services):
    services.weather.current.side_effect = ServiceError("e" * 300)
    result = await executor.execute("check_weather", {"location": "Oslo"})
    assert result == "Error: " + "e" * 100


@pytest.mark.asyncio
async def test_search_tasks(executor, services):
    services.tasks.find.return_value = [Task(id=7, title="Henry: file taxes", priority=3)]
    result = await executor.execute("search_tasks", {"query": "taxes"})
    assert result == "[7] Henry: file taxes (due no due date, high priority)"


@pytest.mark.asyncio
async def test_defer_task(executor, services, settings):
    result = await executor.execute("defer_task", {"task_id": "42", "reason": "waiting on quote"})

    services.tasks.edit_task.assert_awaited_once_with(
        42, {"duedate": 0}, ["Deferred", today_tag(settings)], action="deferred"
    )
    services.tasks.append_note.assert_awaited_once()
    assert "waiting on quote" in services.tasks.append_note.await_args.args[1]
    assert result == 'Task 42 deferred to Someday. Due date removed, tagged "Deferred".'


@pytest.mark.asyncio
async def test_schedule_task(executor, services, settings):
    result = await executor.execute(
        "schedule_task", {"task_id": 5, "due_date": "2025-04-01", "priority": "high"}
    )
    task_id, fields, tags = services.tasks.edit_task.await_args.args
    assert task_id == 5
    assert fields == {"duedate": 1743508800, "priority": 3}
    assert tags == [today_tag(settings)]
    assert result == "Task 5 scheduled for 2025-04-01 with high priority."


@pytest.mark.asyncio
async def test_schedule_task_rejects_bad_date(executor, services):
    result = await executor.execute("schedule_task", {"task_id": 5, "due_date": "next tuesday"})
    assert result == "Error: due_date must be YYYY-MM-DD, got 'next tuesday'"
    services.tasks.edit_task.assert_not_awaited()


@pytest.mark.asyncio
async def test_delegate_task(executor, services, settings):
    settings.task_assistant_context_id = 99
    result = await executor.execute("delegate_task", {"task_id": 8})
    services.tasks.edit_task.assert_awaited_once_with(
        8, {"context": 99}, ["Henry", "Overnight", today_tag(settings)], action="delegated"
    )
    assert "delegated to Henry" in result


@pytest.mark.asyncio
async def test_mark_triaged_skips_already_triaged(executor, services):
    services.tasks.get_task.return_value = Task(id=3, title="x", tag="home, triaged-0101")
    assert await executor.execute("mark_triaged", {"task_id": 3}) == "Task 3 already has a triaged tag."
    services.tasks.edit_task.assert_not_awaited()


@pytest.mark.asyncio
async def test_add_task_warns_about_duplicates(executor, services):
    services.tasks.find.return_value = [Task(id=11, title="Henry: renew passport")]
    result = await executor.execute("add_task", {"title": "Henry: renew passport"})

    services.tasks.find.assert_awaited_once_with("renew passport")
    assert result.startswith("WARNING: Similar task(s) exist:\n[11] Henry: renew passport")
    services.tasks.add_task.assert_not_awaited()


@pytest.mark.asyncio
async def test_add_task(executor, services):
    services.tasks.find.return_value = []
    services.tasks.add_task.return_value = 1234
    result = await executor.execute(
        "add_task", {"title": "Book flights", "priority": "high", "duedate": "2025-05-01"}
    )

    services.tasks.add_task.assert_awaited_once_with(
        "Book flights",
        folder="pWorkflow",
        priority=3,
        tags=["Henry"],
        due="2025-05-01",
        star=False,
        note=None,
    )
    assert result == 'Added task "Book flights" (ID 1234) to pWorkflow, high priority, due 2025-05-01.'


@pytest.mark.asyncio
async def test_update_task_note_links_transcript(executor, services):
    assert await executor.execute("update_task_note", {"task_id": 4, "note": "Call the plumber"}) == (
        "Note added to task 4."
    )
    task_id, text = services.tasks.append_note.await_args.args
    assert task_id == 4
    assert text.startswith("Call the plumber\n📞 Voice call ref: memory/voice-calls/")
    assert text.endswith("*.txt")


@pytest.mark.asyncio
async def test_update_calendar_event_needs_changes(executor, services):
    result = await executor.execute("update_calendar_event", {"event_query": "dentist"})
    assert result == "Nothing to update. Tell me what should change."
    services.calendar.find_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_calendar_event(executor, services):
    services.calendar.find_event.return_value = CalendarEvent(id="ev9", summary="Dentist")
    result = await executor.execute(
        "update_calendar_event", {"event_query": "dentist", "new_start": "2025-03-14T16:00:00"}
    )
    services.calendar.update_event.assert_awaited_once_with("ev9", {"start": "2025-03-14T16:00:00"})
    assert result == 'Updated event "Dentist".'


@pytest.mark.asyncio
async def test_delete_calendar_event_requires_confirmation(executor, services):
    result = await executor.execute("delete_calendar_event", {"event_query": "dentist", "confirm": "yes"})
    assert result.startswith("Deletion not confirmed.")
    services.calendar.delete_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_calendar_event(executor, services):
    services.calendar.find_event.return_value = CalendarEvent(id="ev9", summary="Dentist")
    result = await executor.execute("delete_calendar_event", {"event_query": "dentist", "confirm": True})
    services.calendar.delete_event.assert_awaited_once_with("ev9")
    assert result == 'Deleted event "Dentist".'


@pytest.mark.asyncio
async def test_read_email_from_owner_inbox(executor, services):
    services.email.search.return_value = [
        EmailMessageSummary(id="m1", sender="Bank", subject="Statement", date="Fri", snippet="Your statement")
    ]
    result = await executor.execute("read_email", {"account": "owner", "query": "from:bank"})

    services.email.search.assert_awaited_once_with("from:bank", mailbox="paul@example.com", max_results=5)
    assert result.startswith("Found 1 emails in paul@example.com:")
    assert "[ID: m1]" in result


@pytest.mark.asyncio
async def test_read_full_email_is_capped(executor, services):
    services.email.get_message.return_value = EmailMessageSummary(
        id="m1", sender="a@b.c", subject="Long", date="Fri", body="y" * 5000
    )
    result = await executor.execute("read_full_email", {"message_id": "m1"})
    assert result.endswith("[Truncated - email too long for voice. Consider forwarding to yourself.]")
    assert len(result) < 2200


@pytest.mark.asyncio
async def test_forward_email_defaults_to_owner(executor, services):
    services.email.get_message.return_value = EmailMessageSummary(
        id="m1", sender="school@example.com", subject="Field trip", date="Thu", body="Permission slip"
    )
    result = await executor.execute("forward_email", {"message_id": "m1", "note": "FYI"})

    to, subject, body = services.email.send.await_args.args
    assert to == "paul@example.com"
    assert subject == "Fwd: Field trip"
    assert body.startswith("FYI\n\n---------- Forwarded message ----------\nFrom: school@example.com")
    assert services.email.send.await_args.kwargs == {"sender": "henry@example.com"}
    assert result == 'Email forwarded to paul@example.com with subject: "Fwd: Field trip"'


@pytest.mark.asyncio
async def test_search_web(executor, services):
    services.search.search.return_value = [
        SearchResult(title=f"Result {i}", description=None if i == 2 else f"About {i}") for i in range(1, 5)
    ]
    result = await executor.execute("search_web", {"query": "tide times"})
    assert result == "1. Result 1\n   About 1\n\n2. Result 2\n   No description\n\n3. Result 3\n   About 3"


@pytest.mark.asyncio
async def test_write_memory(executor, services):
    assert await executor.execute("write_memory", {"content": "Likes oat milk"}) == "Written to today's memory file."
    services.memory.write_daily.assert_awaited_once_with("Likes oat milk")

    result = await executor.execute("write_memory", {"content": "Allergic to cats", "target": "longterm"})
    assert result == "Written to MEMORY.md (long-term memory)."
    services.memory.write_longterm.assert_awaited_once_with("Allergic to cats")


@pytest.mark.asyncio
async def test_send_message_to_clawdbot(executor, services):
    result = await executor.execute("send_message_to_clawdbot", {"message": "Draft the newsletter"})
    services.requests.append.assert_awaited_once_with("Draft the newsletter")
    assert result == "Message saved. Will handle it after the call."


BAD_ARGUMENTS = [
    {},
    {"task_id": "abc", "count": "x", "max_results": [], "date": 20250401, "priority": "urgent"},
    {"location": None, "query": {"nested": True}, "event_id": 7, "confirm": "yes", "content": ["a"]},
]


@pytest.mark.asyncio
@pytest.mark.parametrize("tool", list(ToolName), ids=lambda tool: tool.value)
@pytest.mark.parametrize("args", BAD_ARGUMENTS, ids=["empty", "wrong-types", "odd-values"])
async def test_every_tool_returns_text_for_bad_arguments(executor, tool, args):
    """No tool lets an exception escape, whatever the model sends"""
    result = await executor.execute(tool.value, args)
    assert isinstance(result, str)


@pytest.mark.asyncio
@pytest.mark.parametrize("tool", list(ToolName), ids=lambda tool: tool.value)
async def test_every_tool_rejects_non_object_arguments(executor, tool):
    assert await executor.execute(tool.value, ["not", "an", "object"]) == "Error: tool arguments must be a JSON object"

"""
The closed catalog of tools the realtime model may call.

``ToolName`` is the authoritative list; ``TOOLS`` holds the function schemas
published to the model in the session update. The executor refuses to start
unless it has exactly one handler per ``ToolName`` and the schemas name the
same set.
"""

from enum import Enum
from typing import Any, Dict, List


class ToolName(str, Enum):
    # Cache-first reads
    CHECK_WEATHER = "check_weather"
    CHECK_CALENDAR = "check_calendar"
    GET_EVENT_DETAILS = "get_event_details"
    TASKS_DUE = "tasks_due"
    GET_BRIEFING = "get_briefing"
    # Always-live reads
    GET_TELEGRAM_CONTEXT = "get_telegram_context"
    SEARCH_TASKS = "search_tasks"
    TRIAGE_TASKS = "triage_tasks"
    GET_TASK = "get_task"
    READ_EMAIL = "read_email"
    READ_FULL_EMAIL = "read_full_email"
    SEARCH_MEMORY = "search_memory"
    SEARCH_WEB = "search_web"
    # Live writes
    DEFER_TASK = "defer_task"
    MARK_OBSOLETE = "mark_obsolete"
    COMPLETE_TASK = "complete_task"
    SET_PRIORITY = "set_priority"
    SCHEDULE_TASK = "schedule_task"
    DELEGATE_TASK = "delegate_task"
    MARK_TRIAGED = "mark_triaged"
    ADD_TASK = "add_task"
    UPDATE_TASK_NOTE = "update_task_note"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    UPDATE_CALENDAR_EVENT = "update_calendar_event"
    DELETE_CALENDAR_EVENT = "delete_calendar_event"
    FORWARD_EMAIL = "forward_email"
    WRITE_MEMORY = "write_memory"
    SEND_MESSAGE_TO_CLAWDBOT = "send_message_to_clawdbot"


def _function(name: ToolName, description: str, properties: Dict[str, Any], required=None) -> Dict[str, Any]:
    parameters: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = list(required)
    return {
        "type": "function",
        "name": name.value,
        "description": description,
        "parameters": parameters,
    }


def _string(description: str) -> Dict[str, str]:
    return {"type": "string", "description": description}


def _number(description: str) -> Dict[str, str]:
    return {"type": "number", "description": description}


def _boolean(description: str) -> Dict[str, str]:
    return {"type": "boolean", "description": description}


_TASK_ID = _number("The task manager task ID")

TOOLS: List[Dict[str, Any]] = [
    _function(
        ToolName.CHECK_WEATHER,
        "Get current weather and forecast. Uses cached data for instant response.",
        {"location": _string("Optional specific location (default uses the cached home forecast)")},
    ),
    _function(
        ToolName.CHECK_CALENDAR,
        "Get today and tomorrow calendar events. Uses cached data for instant response.",
        {"days": _number("Number of days (ignored, always returns today + tomorrow from cache)")},
    ),
    _function(
        ToolName.GET_EVENT_DETAILS,
        "Get full details of a calendar event including description/notes. Use when the caller asks "
        "\"what is that meeting about\" or wants details of an event.",
        {"query": _string("Event name or keyword to search for")},
        required=["query"],
    ),
    _function(
        ToolName.TASKS_DUE,
        "List tasks due soon. Uses cached data showing top priority tasks due today/this week.",
        {"range": _string("Time range (ignored, returns cached summary)")},
    ),
    _function(
        ToolName.GET_BRIEFING,
        "Get full morning briefing: weather, calendar, tasks, emails, sitting time, screen time. "
        "Uses cached data for instant response.",
        {},
    ),
    _function(
        ToolName.GET_TELEGRAM_CONTEXT,
        "Get the recent Telegram conversation with the text assistant. Use when the caller asks "
        "\"what did we discuss\" or references chat messages.",
        {"max_messages": _number("Max messages to return (default 20)")},
    ),
    _function(
        ToolName.SEARCH_TASKS,
        "Search tasks by keyword. Uses LIVE API for accurate real-time search.",
        {"query": _string("Search term to find tasks")},
        required=["query"],
    ),
    _function(
        ToolName.TRIAGE_TASKS,
        "Get the next batch of tasks for triage. Returns up to 10 tasks: 6 treadmill (dated but "
        "bumping 3+ months) + 2 standby >1yr + 2 standby <1yr. Use the 5 D's: DO (schedule it), "
        "DELEGATE (assign to the assistant), DEFER (to someday), DELETE (kill it), DETAIL (need more "
        "info). LIVE API.",
        {"count": _number("Number of tasks to return (default 10)")},
    ),
    _function(
        ToolName.DEFER_TASK,
        "Defer a task to Someday/Maybe. Removes due date and adds \"Deferred\" tag. Use when task is "
        "nice-to-have but not essential. LIVE API.",
        {"task_id": _TASK_ID, "reason": _string("Optional reason for deferring")},
        required=["task_id"],
    ),
    _function(
        ToolName.MARK_OBSOLETE,
        "Mark a task as obsolete/done. Completes the task and tags it \"obsolete\". Use for DELETE "
        "decisions in triage. LIVE API.",
        {"task_id": _TASK_ID, "reason": _string("Optional reason why obsolete")},
        required=["task_id"],
    ),
    _function(
        ToolName.COMPLETE_TASK,
        "Mark a task as completed (actually done, not obsolete). Use when task is finished. LIVE API.",
        {"task_id": _TASK_ID},
        required=["task_id"],
    ),
    _function(
        ToolName.SET_PRIORITY,
        "Set task priority without changing due date. Priority: low, medium, high. LIVE API.",
        {"task_id": _TASK_ID, "priority": _string("Priority level: low, medium, or high")},
        required=["task_id", "priority"],
    ),
    _function(
        ToolName.SCHEDULE_TASK,
        "Schedule a task (set a due date). Use for DO decisions in triage. LIVE API.",
        {
            "task_id": _TASK_ID,
            "due_date": _string("Due date YYYY-MM-DD format"),
            "priority": _string("Optional priority: low, medium, high"),
        },
        required=["task_id", "due_date"],
    ),
    _function(
        ToolName.DELEGATE_TASK,
        "Delegate a task to the assistant. Sets the assistant context and adds an \"Overnight\" tag "
        "so it is worked overnight. LIVE API.",
        {"task_id": _TASK_ID, "note": _string("Optional instructions for the assistant")},
        required=["task_id"],
    ),
    _function(
        ToolName.MARK_TRIAGED,
        "Mark a task as triaged (adds triaged-MMDD tag). Call after any triage decision. LIVE API.",
        {"task_id": _TASK_ID},
        required=["task_id"],
    ),
    _function(
        ToolName.GET_TASK,
        "Get full details of a task by ID including notes. Uses LIVE API.",
        {"task_id": _TASK_ID},
        required=["task_id"],
    ),
    _function(
        ToolName.ADD_TASK,
        "Add a new task. Uses LIVE API. Confirm details with the caller first unless they say "
        "\"just do it\".",
        {
            "title": _string("Task title"),
            "folder": _string("Folder name (default: pWorkflow)"),
            "priority": _string("low, medium, or high (default: medium)"),
            "duedate": _string("Due date YYYY-MM-DD format"),
            "star": _boolean("Star the task"),
            "note": _string("Optional note"),
        },
        required=["title"],
    ),
    _function(
        ToolName.UPDATE_TASK_NOTE,
        "Append a note to an EXISTING task. Uses LIVE API. Get task_id from search_tasks first.",
        {"task_id": _TASK_ID, "note": _string("Text to append to existing note")},
        required=["task_id", "note"],
    ),
    _function(
        ToolName.CREATE_CALENDAR_EVENT,
        "Create a calendar event. Uses LIVE API. Confirm details first.",
        {
            "summary": _string("Event title"),
            "start": _string("Start time YYYY-MM-DDTHH:MM:SS (24h local time)"),
            "end": _string("End time YYYY-MM-DDTHH:MM:SS"),
            "attendees": _string("Comma-separated emails to invite"),
            "description": _string("Optional description"),
            "location": _string("Optional location"),
        },
        required=["summary", "start", "end"],
    ),
    _function(
        ToolName.UPDATE_CALENDAR_EVENT,
        "Update an existing calendar event (move time, change description, etc). Uses LIVE API.",
        {
            "event_query": _string("Event name to search for"),
            "new_start": _string("New start time YYYY-MM-DDTHH:MM:SS (optional)"),
            "new_end": _string("New end time YYYY-MM-DDTHH:MM:SS (optional)"),
            "new_description": _string("New description/notes (optional)"),
            "new_summary": _string("New title (optional)"),
            "new_location": _string("New location (optional)"),
        },
        required=["event_query"],
    ),
    _function(
        ToolName.READ_EMAIL,
        "Search and read emails in the assistant's inbox (full access) or the owner's inbox "
        "(read-only). Returns subject, sender, and snippet.",
        {
            "query": _string("Search query (Gmail syntax: from:, subject:, is:unread, etc.)"),
            "account": _string("Which inbox: \"assistant\" or \"owner\" (default: assistant)"),
            "max_results": _number("Max emails to return (default: 5)"),
        },
        required=["query"],
    ),
    _function(
        ToolName.DELETE_CALENDAR_EVENT,
        "Delete a calendar event. Uses LIVE API. ALWAYS confirm with the caller before deleting.",
        {
            "event_query": _string("Event name to search for and delete"),
            "confirm": _boolean("Must be true to proceed with deletion"),
        },
        required=["event_query", "confirm"],
    ),
    _function(
        ToolName.READ_FULL_EMAIL,
        "Read the complete body of an email. Use after read_email to get full content. Only works "
        "with the assistant's inbox.",
        {"message_id": _string("Message ID from read_email results")},
        required=["message_id"],
    ),
    _function(
        ToolName.FORWARD_EMAIL,
        "Forward an email from the assistant's inbox to another address (usually the owner). Can "
        "include an optional note.",
        {
            "message_id": _string("Message ID of email to forward"),
            "to": _string("Email address to forward to (default: the owner)"),
            "note": _string("Optional note to add above forwarded content"),
        },
        required=["message_id"],
    ),
    _function(
        ToolName.WRITE_MEMORY,
        "Write to the assistant's memory files. Uses LIVE file write.",
        {
            "content": _string("Text to write with heading"),
            "target": _string("\"daily\" (default) or \"longterm\" for MEMORY.md"),
        },
        required=["content"],
    ),
    _function(
        ToolName.SEARCH_MEMORY,
        "Search the assistant's workspace memory. Uses LIVE search.",
        {"query": _string("Search query")},
        required=["query"],
    ),
    _function(
        ToolName.SEND_MESSAGE_TO_CLAWDBOT,
        "Send a message to the text assistant for tasks you cannot do on call (emails, research).",
        {"message": _string("The instruction to send")},
        required=["message"],
    ),
    _function(
        ToolName.SEARCH_WEB,
        "Search the web for current information. Use for news, facts, prices, or anything not in "
        "memory/calendar/tasks.",
        {"query": _string("Search query")},
        required=["query"],
    ),
]


def catalog_names() -> List[str]:
    return [tool["name"] for tool in TOOLS]

"""
Tool executor for the realtime model's function calls.

Read tools try the precomputed briefing cache first and fall back to the live
service on a miss; everything else goes to the live service. ``execute``
always returns a string: failures come back as short ``Error: ...`` strings
so the model can tell the caller what went wrong.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from voice_gateway.config.constants import (
    LOGGER_NAME,
    MAX_TOOL_ERROR_CHARS,
    MAX_TOOL_OUTPUT_CHARS,
)
from voice_gateway.config.settings import Settings
from voice_gateway.errors import ConfigurationError, ServiceError, ToolExecutionError
from voice_gateway.models.cache import CacheSnapshot
from voice_gateway.services.container import ToolServices
from voice_gateway.services.google import render_event_details
from voice_gateway.services.tasks import due_timestamp, priority_value, triage_tag
from voice_gateway.tools.cache_reader import CacheReader
from voice_gateway.tools.catalog import ToolName, catalog_names

logger = logging.getLogger(LOGGER_NAME)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[str]]

# Per-tool deadline in seconds
TOOL_TIMEOUTS: Dict[ToolName, int] = {
    ToolName.CHECK_WEATHER: 10,
    ToolName.CHECK_CALENDAR: 15,
    ToolName.GET_EVENT_DETAILS: 15,
    ToolName.TASKS_DUE: 15,
    ToolName.GET_BRIEFING: 45,
    ToolName.GET_TELEGRAM_CONTEXT: 10,
    ToolName.SEARCH_TASKS: 15,
    ToolName.TRIAGE_TASKS: 20,
    ToolName.GET_TASK: 15,
    ToolName.READ_EMAIL: 20,
    ToolName.READ_FULL_EMAIL: 20,
    ToolName.SEARCH_MEMORY: 5,
    ToolName.SEARCH_WEB: 10,
    ToolName.DEFER_TASK: 25,
    ToolName.MARK_OBSOLETE: 15,
    ToolName.COMPLETE_TASK: 15,
    ToolName.SET_PRIORITY: 15,
    ToolName.SCHEDULE_TASK: 15,
    ToolName.DELEGATE_TASK: 25,
    ToolName.MARK_TRIAGED: 15,
    ToolName.ADD_TASK: 25,
    ToolName.UPDATE_TASK_NOTE: 15,
    ToolName.CREATE_CALENDAR_EVENT: 15,
    ToolName.UPDATE_CALENDAR_EVENT: 30,
    ToolName.DELETE_CALENDAR_EVENT: 30,
    ToolName.FORWARD_EMAIL: 40,
    ToolName.WRITE_MEMORY: 5,
    ToolName.SEND_MESSAGE_TO_CLAWDBOT: 5,
}

DEFAULT_TASK_FOLDER = "pWorkflow"
MAX_EMAIL_BODY_CHARS = 2000
MAX_SEARCH_TASK_LINES = 10
MAX_DUE_TASK_LINES = 15
WEB_RESULTS = 3
DUE_WINDOW_DAYS = 7


def truncate(text: str, limit: int = MAX_TOOL_OUTPUT_CHARS) -> str:
    return text if len(text) <= limit else text[:limit]


def _require(args: Dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or value == "":
        raise ToolExecutionError(f"missing required argument '{key}'")
    return value


def _task_id(args: Dict[str, Any]) -> int:
    value = _require(args, "task_id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ToolExecutionError(f"invalid task_id: {value!r}")


def _format_briefing(snapshot: CacheSnapshot) -> str:
    s = snapshot.voice_summaries
    cal = s.calendar
    return (
        f"WEATHER:\n{s.weather}\n\n"
        f"CALENDAR TODAY:\n{(cal and cal.today) or 'No events'}\n\n"
        f"CALENDAR TOMORROW:\n{(cal and cal.tomorrow) or 'No events'}\n\n"
        f"TASKS DUE:\n{s.tasks}\n\n"
        f"SITTING TIME:\n{s.sitting}\n\n"
        f"SCREEN TIME:\n{s.screen_time}\n\n"
        f"IMPORTANT EMAILS:\n{s.emails}\n\n"
        f"SCHOOL UPDATES:\n{s.school_emails}"
    )


class ToolExecutor:
    """
    Runs one tool call against the injected services.

    The registry is keyed by tool name and is checked against ``ToolName`` and
    the published catalog on construction, so a tool the model can see always
    has a handler.
    """

    def __init__(
        self,
        services: ToolServices,
        cache: CacheReader,
        settings: Settings,
        timeouts: Optional[Dict[ToolName, float]] = None,
    ):
        self.services = services
        self.cache = cache
        self.settings = settings
        self.timeouts = {**TOOL_TIMEOUTS, **(timeouts or {})}
        self._handlers: Dict[str, ToolHandler] = {
            ToolName.CHECK_WEATHER.value: self._check_weather,
            ToolName.CHECK_CALENDAR.value: self._check_calendar,
            ToolName.GET_EVENT_DETAILS.value: self._get_event_details,
            ToolName.TASKS_DUE.value: self._tasks_due,
            ToolName.GET_BRIEFING.value: self._get_briefing,
            ToolName.GET_TELEGRAM_CONTEXT.value: self._get_telegram_context,
            ToolName.SEARCH_TASKS.value: self._search_tasks,
            ToolName.TRIAGE_TASKS.value: self._triage_tasks,
            ToolName.GET_TASK.value: self._get_task,
            ToolName.READ_EMAIL.value: self._read_email,
            ToolName.READ_FULL_EMAIL.value: self._read_full_email,
            ToolName.SEARCH_MEMORY.value: self._search_memory,
            ToolName.SEARCH_WEB.value: self._search_web,
            ToolName.DEFER_TASK.value: self._defer_task,
            ToolName.MARK_OBSOLETE.value: self._mark_obsolete,
            ToolName.COMPLETE_TASK.value: self._complete_task,
            ToolName.SET_PRIORITY.value: self._set_priority,
            ToolName.SCHEDULE_TASK.value: self._schedule_task,
            ToolName.DELEGATE_TASK.value: self._delegate_task,
            ToolName.MARK_TRIAGED.value: self._mark_triaged,
            ToolName.ADD_TASK.value: self._add_task,
            ToolName.UPDATE_TASK_NOTE.value: self._update_task_note,
            ToolName.CREATE_CALENDAR_EVENT.value: self._create_calendar_event,
            ToolName.UPDATE_CALENDAR_EVENT.value: self._update_calendar_event,
            ToolName.DELETE_CALENDAR_EVENT.value: self._delete_calendar_event,
            ToolName.FORWARD_EMAIL.value: self._forward_email,
            ToolName.WRITE_MEMORY.value: self._write_memory,
            ToolName.SEND_MESSAGE_TO_CLAWDBOT.value: self._send_message_to_clawdbot,
        }
        self._validate_registry()

    def _validate_registry(self) -> None:
        expected = {t.value for t in ToolName}
        problems = []
        if set(self._handlers) != expected:
            problems.append(f"handlers {sorted(set(self._handlers) ^ expected)}")
        published = set(catalog_names())
        if published != expected:
            problems.append(f"catalog {sorted(published ^ expected)}")
        missing_timeouts = {t.value for t in ToolName} - {t.value for t in self.timeouts}
        if missing_timeouts:
            problems.append(f"timeouts {sorted(missing_timeouts)}")
        if problems:
            raise ConfigurationError(f"Tool registry mismatch: {'; '.join(problems)}")

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    async def execute(self, name: str, args: Any) -> str:
        """
        Run a tool and return its result as text. Never raises.

        Args:
            name: Tool name as sent by the model
            args: Decoded JSON arguments (must be an object)

        Returns:
            The tool output, truncated to the output limit
        """
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning(f"Unknown tool requested: {name}")
            return f"Unknown tool: {name}"
        if not isinstance(args, dict):
            return "Error: tool arguments must be a JSON object"

        timeout = self.timeouts[ToolName(name)]
        logger.info(f"Executing tool {name} with args {args}")
        try:
            result = await asyncio.wait_for(handler(args), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {name} timed out after {timeout}s")
            return f"Error: {name} timed out after {timeout}s"
        except Exception as e:
            # Tool boundary: every failure is reported back to the model as text
            logger.error(f"Tool {name} error: {e}", exc_info=not isinstance(e, (ServiceError, ToolExecutionError)))
            return f"Error: {str(e)[:MAX_TOOL_ERROR_CHARS]}"
        return truncate(str(result))

    # Helpers

    def _today(self):
        return datetime.now(self.settings.local_timezone).date()

    def _triage_tag(self) -> str:
        return triage_tag(self._today())

    def _cached_summaries(self):
        snapshot = self.cache.read()
        return snapshot.voice_summaries if snapshot else None

    # Cache-first reads

    async def _check_weather(self, args):
        location = args.get("location")
        summaries = None if location else self._cached_summaries()
        if summaries and summaries.weather:
            logger.info("Weather: returning cached data")
            return summaries.weather
        logger.info("Weather: cache miss, fetching live")
        return await self.services.weather.current(location)

    async def _check_calendar(self, args):
        summaries = self._cached_summaries()
        if summaries and summaries.calendar:
            logger.info("Calendar: returning cached data")
            cal = summaries.calendar
            return f"TODAY:\n{cal.today}\n\nTOMORROW:\n{cal.tomorrow}"
        logger.info("Calendar: cache miss, fetching live")
        events = await self.services.calendar.list_events(days=2)
        return "\n".join(e.line() for e in events) or "No upcoming events."

    async def _get_event_details(self, args):
        query = str(args.get("query") or "").lower()
        snapshot = self.cache.read()
        if snapshot:
            for event in snapshot.detailed_events:
                if event.summary and query in event.summary.lower():
                    logger.info("Event details: found in cache")
                    return render_event_details(
                        event.summary, event.start, event.location, event.description, event.attendees
                    )
        logger.info("Event details: cache miss, fetching live")
        events = await self.services.calendar.list_events(days=7, query=query)
        if not events:
            return f'No event found matching "{query}".'
        return events[0].details()

    async def _tasks_due(self, args):
        summaries = self._cached_summaries()
        if summaries and summaries.tasks:
            logger.info("Tasks: returning cached data")
            return summaries.tasks
        logger.info("Tasks: cache miss, fetching live")
        tasks = await self.services.tasks.due_within(DUE_WINDOW_DAYS, today=self._today())
        return "\n".join(t.summary_line() for t in tasks[:MAX_DUE_TASK_LINES]) or "No tasks due."

    async def _get_briefing(self, args):
        snapshot = self.cache.read()
        if snapshot and snapshot.voice_summaries:
            logger.info("Briefing: returning cached data")
            return _format_briefing(snapshot)

        logger.info("Briefing: cache miss, composing live")
        sections = []
        for title, fetch in (
            ("WEATHER", self._check_weather),
            ("CALENDAR", self._check_calendar),
            ("TASKS DUE", self._tasks_due),
        ):
            try:
                body = await fetch({})
            except ServiceError as e:
                logger.warning(f"Briefing section {title} unavailable: {e}")
                body = "Unavailable right now."
            sections.append(f"{title}:\n{body}")
        return "\n\n".join(sections)

    # Always-live reads

    async def _get_telegram_context(self, args):
        limit = int(args.get("max_messages") or 20)
        lines = await self.services.telegram.recent(limit=limit)
        logger.info(f"Telegram: returning {len(lines)} messages")
        return "\n".join(lines) or "No Telegram messages found."

    async def _search_tasks(self, args):
        tasks = await self.services.tasks.find(str(_require(args, "query")))
        lines = [t.summary_line() for t in tasks[:MAX_SEARCH_TASK_LINES]]
        return "\n".join(lines) or "No tasks found matching that search."

    async def _triage_tasks(self, args):
        count = int(args.get("count") or 10)
        batch = await self.services.tasks.triage_batch(count=count, today=self._today())
        if not batch:
            return "No tasks left to triage."
        lines = [f"Triage batch ({len(batch)} tasks):"]
        for t in batch:
            lines.append(t.summary_line())
            if t.note:
                lines.append(f"   Note: {t.note.splitlines()[0][:120]}")
        return "\n".join(lines)

    async def _get_task(self, args):
        task = await self.services.tasks.get_task(_task_id(args))
        return task.details()

    def _mailbox(self, account: Optional[str]):
        """Resolve the ``account`` argument to a Gmail user id and a spoken label."""
        account = (account or "assistant").strip().lower()
        if account in ("owner", self.settings.owner_name.lower()):
            if not self.settings.owner_email:
                raise ToolExecutionError("the owner's inbox is not configured")
            return self.settings.owner_email, self.settings.owner_email
        return "me", self.settings.assistant_email or "the assistant inbox"

    async def _read_email(self, args):
        query = args.get("query") or "is:unread"
        max_results = int(args.get("max_results") or 5)
        mailbox, label = self._mailbox(args.get("account"))
        logger.info(f"Read email: searching \"{query}\" in {label}")
        messages = await self.services.email.search(query, mailbox=mailbox, max_results=max_results)
        if not messages:
            return f'No emails found matching "{query}" in {label}.'
        out = [f"Found {len(messages)} emails in {label}:\n"]
        for i, m in enumerate(messages, start=1):
            entry = f"{i}. [ID: {m.id}]\n   From: {m.sender}\n   Subject: {m.subject}\n   Date: {m.date}"
            if m.snippet:
                entry += f"\n   Preview: {m.snippet[:100]}..."
            out.append(entry + "\n")
        return "\n".join(out)

    async def _read_full_email(self, args):
        message_id = str(_require(args, "message_id"))
        m = await self.services.email.get_message(message_id)
        text = f"From: {m.sender}\nDate: {m.date}\nSubject: {m.subject}\n\n{m.body.strip()}"
        if len(text) > MAX_EMAIL_BODY_CHARS:
            return (
                text[:MAX_EMAIL_BODY_CHARS]
                + "\n\n[Truncated - email too long for voice. Consider forwarding to yourself.]"
            )
        return text

    async def _search_memory(self, args):
        results = await self.services.memory.search(str(_require(args, "query")), limit=5)
        return "\n".join(results) or "No results found."

    async def _search_web(self, args):
        query = str(_require(args, "query"))
        logger.info(f"Web search: {query}")
        results = await self.services.search.search(query, count=5)
        if not results:
            return "No results found."
        return "\n\n".join(
            f"{i}. {r.title}\n   {r.description or 'No description'}"
            for i, r in enumerate(results[:WEB_RESULTS], start=1)
        )

    # Task writes

    async def _defer_task(self, args):
        task_id = _task_id(args)
        tasks = self.services.tasks
        await tasks.edit_task(task_id, {"duedate": 0}, ["Deferred", self._triage_tag()], action="deferred")
        if args.get("reason"):
            await tasks.append_note(task_id, f"Deferred {self._today().isoformat()}: {args['reason']}")
        return f'Task {task_id} deferred to Someday. Due date removed, tagged "Deferred".'

    async def _mark_obsolete(self, args):
        task_id = _task_id(args)
        completed = int(datetime.now(timezone.utc).timestamp())
        await self.services.tasks.edit_task(
            task_id, {"completed": completed}, ["obsolete", self._triage_tag()], action="obsolete"
        )
        if args.get("reason"):
            await self.services.tasks.append_note(task_id, f"Obsolete: {args['reason']}")
        return f"Task {task_id} marked obsolete and completed."

    async def _complete_task(self, args):
        task_id = _task_id(args)
        completed = int(datetime.now(timezone.utc).timestamp())
        await self.services.tasks.edit_task(
            task_id, {"completed": completed}, [self._triage_tag()], action="completed"
        )
        return f"Task {task_id} marked complete."

    async def _set_priority(self, args):
        task_id = _task_id(args)
        priority = str(_require(args, "priority"))
        await self.services.tasks.edit_task(
            task_id, {"priority": priority_value(priority)}, [self._triage_tag()], action=f"priority {priority}"
        )
        return f"Task {task_id} priority set to {priority}."

    async def _schedule_task(self, args):
        task_id = _task_id(args)
        due_date = str(_require(args, "due_date"))
        try:
            fields: Dict[str, Any] = {"duedate": due_timestamp(due_date)}
        except ValueError:
            raise ToolExecutionError(f"due_date must be YYYY-MM-DD, got {due_date!r}")
        priority = args.get("priority")
        if priority:
            fields["priority"] = priority_value(priority)
        await self.services.tasks.edit_task(task_id, fields, [self._triage_tag()], action=f"scheduled {due_date}")
        suffix = f" with {priority} priority" if priority else ""
        return f"Task {task_id} scheduled for {due_date}{suffix}."

    async def _delegate_task(self, args):
        task_id = _task_id(args)
        assistant = self.settings.assistant_name
        fields: Dict[str, Any] = {}
        if self.settings.task_assistant_context_id:
            fields["context"] = self.settings.task_assistant_context_id
        await self.services.tasks.edit_task(
            task_id, fields, [assistant, "Overnight", self._triage_tag()], action="delegated"
        )
        if args.get("note"):
            await self.services.tasks.append_note(
                task_id, f"Delegated to {assistant} {self._today().isoformat()}: {args['note']}"
            )
        return f'Task {task_id} delegated to {assistant}. Tagged "{assistant}" + "Overnight" for overnight processing.'

    async def _mark_triaged(self, args):
        task_id = _task_id(args)
        task = await self.services.tasks.get_task(task_id)
        if task.is_triaged:
            return f"Task {task_id} already has a triaged tag."
        tag = self._triage_tag()
        await self.services.tasks.edit_task(task_id, {}, [tag], action="triaged")
        return f"Task {task_id} marked as triaged ({tag})."

    async def _add_task(self, args):
        title = str(_require(args, "title"))
        folder = args.get("folder") or DEFAULT_TASK_FOLDER
        priority = args.get("priority") or "medium"

        words = [
            w for w in re.split(r"[\s:]+", title)
            if len(w) > 3 and w.lower() != self.settings.assistant_name.lower()
        ]
        keyword = " ".join(words[:2])
        if keyword:
            try:
                existing = await self.services.tasks.find(keyword)
            except ServiceError as e:
                logger.warning(f"Duplicate check failed, adding anyway: {e}")
                existing = []
            if existing:
                lines = "\n".join(t.summary_line() for t in existing[:MAX_SEARCH_TASK_LINES])
                return (
                    f"WARNING: Similar task(s) exist:\n{lines}\n\n"
                    "Use update_task_note to update existing, or confirm this is genuinely new."
                )

        task_id = await self.services.tasks.add_task(
            title,
            folder=folder,
            priority=priority_value(priority),
            tags=[self.settings.assistant_name],
            due=args.get("duedate"),
            star=bool(args.get("star")),
            note=args.get("note"),
        )
        due = f", due {args['duedate']}" if args.get("duedate") else ""
        return f'Added task "{title}" (ID {task_id}) to {folder}, {priority} priority{due}.'

    async def _update_task_note(self, args):
        task_id = _task_id(args)
        note = str(_require(args, "note"))
        stamp = re.sub(r"[:.]", "-", datetime.now(timezone.utc).isoformat())[:19]
        transcripts = self.settings.resolved_transcripts_dir
        try:
            ref_dir = transcripts.relative_to(self.settings.workspace_dir)
        except ValueError:
            ref_dir = transcripts
        await self.services.tasks.append_note(
            task_id, f"{note}\n📞 Voice call ref: {ref_dir.as_posix()}/{stamp}*.txt"
        )
        return f"Note added to task {task_id}."

    # Calendar writes

    async def _create_calendar_event(self, args):
        summary = str(_require(args, "summary"))
        start = str(_require(args, "start"))
        end = str(_require(args, "end"))
        attendees = [a.strip() for a in str(args.get("attendees") or "").split(",") if a.strip()]
        await self.services.calendar.create_event(
            summary,
            start,
            end,
            attendees=attendees,
            description=args.get("description"),
            location=args.get("location"),
        )
        invited = f" Invites sent to {', '.join(attendees)}." if attendees else ""
        return f'Created event "{summary}" from {start} to {end}.{invited}'

    async def _update_calendar_event(self, args):
        query = str(_require(args, "event_query"))
        changes = {
            field: args[key]
            for key, field in (
                ("new_start", "start"),
                ("new_end", "end"),
                ("new_description", "description"),
                ("new_summary", "summary"),
                ("new_location", "location"),
            )
            if args.get(key)
        }
        if not changes:
            return "Nothing to update. Tell me what should change."
        event = await self.services.calendar.find_event(query)
        if event is None:
            return f'No event found matching "{query}".'
        await self.services.calendar.update_event(event.id, changes)
        return f'Updated event "{event.summary}".'

    async def _delete_calendar_event(self, args):
        query = str(_require(args, "event_query"))
        if args.get("confirm") is not True:
            return f'Deletion not confirmed. Please confirm you want to delete "{query}".'
        event = await self.services.calendar.find_event(query)
        if event is None:
            return f'No event found matching "{query}".'
        await self.services.calendar.delete_event(event.id)
        return f'Deleted event "{event.summary}".'

    # Email, memory and hand-off writes

    async def _forward_email(self, args):
        message_id = str(_require(args, "message_id"))
        to = args.get("to") or self.settings.owner_email
        if not to:
            raise ToolExecutionError("no forwarding address given and OWNER_EMAIL is not set")
        original = await self.services.email.get_message(message_id)

        body = f"{args['note']}\n\n" if args.get("note") else ""
        body += (
            "---------- Forwarded message ----------\n"
            f"From: {original.sender}\n"
            f"Date: {original.date}\n"
            f"Subject: {original.subject}\n\n"
            f"{original.body.strip()}"
        )
        subject = f"Fwd: {original.subject}"
        await self.services.email.send(to, subject, body, sender=self.settings.assistant_email)
        return f'Email forwarded to {to} with subject: "{subject}"'

    async def _write_memory(self, args):
        content = str(_require(args, "content"))
        if args.get("target") == "longterm":
            await self.services.memory.write_longterm(content)
            return "Written to MEMORY.md (long-term memory)."
        await self.services.memory.write_daily(content)
        return "Written to today's memory file."

    async def _send_message_to_clawdbot(self, args):
        await self.services.requests.append(str(_require(args, "message")))
        return "Message saved. Will handle it after the call."

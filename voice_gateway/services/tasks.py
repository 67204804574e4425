"""
Task manager client (Toodledo API v3).

Every write goes through ``edit_task``, which preserves the existing tags,
merges the new ones in, and appends an audit line naming the attribution
label to the task note so edits made during a call can be traced.
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.errors import ServiceError
from voice_gateway.services.http import HttpService

logger = logging.getLogger(LOGGER_NAME)

TOODLEDO_API = "https://api.toodledo.com/3"
TASK_FIELDS = "folder,tag,duedate,priority,note,star,context,added"

PRIORITY_VALUES = {"low": 1, "medium": 2, "high": 3}
PRIORITY_NAMES = {-1: "negative", 0: "none", 1: "low", 2: "medium", 3: "high"}

TRIAGED_TAG_PREFIX = "triaged-"


def priority_value(name: Optional[str], default: int = 2) -> int:
    """Map ``low``/``medium``/``high`` to the numeric priority (unknown names → default)."""
    if not name:
        return default
    return PRIORITY_VALUES.get(name.strip().lower(), default)


def triage_tag(today: date) -> str:
    return f"{TRIAGED_TAG_PREFIX}{today.strftime('%m%d')}"


def split_tags(tag: str) -> List[str]:
    return [t.strip() for t in (tag or "").split(",") if t.strip()]


def merge_tags(existing: str, new: Iterable[str]) -> str:
    """Union of the existing and new tags, first occurrence order, no duplicates."""
    merged: List[str] = []
    for t in split_tags(existing) + list(new):
        if t not in merged:
            merged.append(t)
    return ", ".join(merged)


def due_timestamp(due: str) -> int:
    """Toodledo stores due dates as noon UTC on the day."""
    day = date.fromisoformat(due)
    return int(datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc).timestamp())


class Task(BaseModel):
    id: int
    title: str = ""
    duedate: int = 0
    priority: int = 0
    tag: str = ""
    note: str = ""
    star: int = 0
    completed: int = 0
    context: int = 0
    folder: int = 0
    added: int = 0

    @property
    def tags(self) -> List[str]:
        return split_tags(self.tag)

    @property
    def due(self) -> Optional[date]:
        if not self.duedate:
            return None
        return datetime.fromtimestamp(self.duedate, tz=timezone.utc).date()

    @property
    def added_on(self) -> Optional[date]:
        if not self.added:
            return None
        return datetime.fromtimestamp(self.added, tz=timezone.utc).date()

    @property
    def is_triaged(self) -> bool:
        return any(t.startswith(TRIAGED_TAG_PREFIX) for t in self.tags)

    def summary_line(self) -> str:
        due = self.due.isoformat() if self.due else "no due date"
        prio = PRIORITY_NAMES.get(self.priority, str(self.priority))
        star = " ★" if self.star else ""
        return f"[{self.id}] {self.title}{star} (due {due}, {prio} priority)"

    def details(self) -> str:
        due = self.due.isoformat() if self.due else "none"
        return (
            f"Title: {self.title}\n"
            f"Due: {due}\n"
            f"Priority: {self.priority}\n"
            f"Note: {self.note or '(empty)'}"
        )


class ToodledoClient(HttpService):
    service_name = "task manager"

    def __init__(self, access_token: Optional[str], attribution_label: str, http_client=None):
        super().__init__(http_client)
        self.access_token = access_token
        self.attribution_label = attribution_label
        self._folders: Optional[Dict[str, int]] = None

    def _auth(self) -> Dict[str, str]:
        if not self.access_token:
            raise ServiceError("task manager is not configured")
        return {"access_token": self.access_token}

    @staticmethod
    def _check(data: Any) -> Any:
        if isinstance(data, dict) and "errorCode" in data:
            raise ServiceError(data.get("errorDesc") or f"error {data['errorCode']}")
        return data

    async def list_tasks(self, include_completed: bool = False) -> List[Task]:
        params = {**self._auth(), "fields": TASK_FIELDS}
        if not include_completed:
            params["comp"] = "0"
        data = self._check(await self._json("GET", f"{TOODLEDO_API}/tasks/get.php", params=params))
        # First element is the {num, total} header
        return [Task.model_validate(t) for t in (data or [])[1:] if "id" in t]

    async def get_task(self, task_id: int) -> Task:
        params = {**self._auth(), "id": str(task_id), "fields": TASK_FIELDS}
        data = self._check(await self._json("GET", f"{TOODLEDO_API}/tasks/get.php", params=params))
        for item in (data or [])[1:]:
            if item.get("id") == int(task_id):
                return Task.model_validate(item)
        raise ServiceError(f"Task {task_id} not found")

    async def find(self, query: str) -> List[Task]:
        """Open tasks whose title, note or tags contain the query (case-insensitive)."""
        needle = query.lower()
        return [
            t
            for t in await self.list_tasks()
            if needle in t.title.lower() or needle in t.note.lower() or needle in t.tag.lower()
        ]

    async def due_within(self, days: int, today: Optional[date] = None) -> List[Task]:
        """Open tasks due (or overdue) within ``days`` days, soonest and highest priority first."""
        today = today or datetime.now(timezone.utc).date()
        tasks = [t for t in await self.list_tasks() if t.due and (t.due - today).days <= days]
        return sorted(tasks, key=lambda t: (t.due, -t.priority))

    async def _folder_id(self, name: str) -> int:
        if self._folders is None:
            data = self._check(
                await self._json("GET", f"{TOODLEDO_API}/folders/get.php", params=self._auth())
            )
            self._folders = {f["name"].lower(): f["id"] for f in data or [] if "name" in f}
        return self._folders.get(name.lower(), 0)

    def _audit(self, note: Optional[str], action: str) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M")
        line = f"[{stamp} {self.attribution_label}] {action}"
        return f"{note}\n{line}" if note else line

    async def edit_task(
        self, task_id: int, fields: Dict[str, Any], add_tags: Iterable[str] = (), action: str = "edit"
    ) -> Task:
        """
        Apply ``fields`` to a task, merging ``add_tags`` into its existing tags.

        Args:
            task_id: The task to edit
            fields: Toodledo task fields to set
            add_tags: Tags to merge in (existing tags are preserved)
            action: Short description recorded in the audit line

        Returns:
            The task as it was before the edit
        """
        task = await self.get_task(task_id)
        payload = {"id": task.id, **fields}
        add_tags = list(add_tags)
        if add_tags:
            payload["tag"] = merge_tags(task.tag, add_tags)
        if "note" not in payload:
            payload["note"] = self._audit(task.note, action)
        data = {**self._auth(), "tasks": json.dumps([payload]), "fields": TASK_FIELDS}
        self._check(await self._json("POST", f"{TOODLEDO_API}/tasks/edit.php", data=data))
        logger.info(f"Task {task_id} edited ({action}) by {self.attribution_label}")
        return task

    async def append_note(self, task_id: int, text: str) -> Task:
        task = await self.get_task(task_id)
        note = f"{self._audit(task.note, 'note')}\n{text}"
        data = {**self._auth(), "tasks": json.dumps([{"id": task.id, "note": note}])}
        self._check(await self._json("POST", f"{TOODLEDO_API}/tasks/edit.php", data=data))
        logger.info(f"Task {task_id} note appended by {self.attribution_label}")
        return task

    async def add_task(
        self,
        title: str,
        folder: str,
        priority: int,
        tags: Iterable[str] = (),
        due: Optional[str] = None,
        star: bool = False,
        note: Optional[str] = None,
    ) -> int:
        task: Dict[str, Any] = {
            "title": title,
            "folder": await self._folder_id(folder),
            "priority": priority,
            "tag": ", ".join(tags),
            "star": 1 if star else 0,
        }
        if due:
            task["duedate"] = due_timestamp(due)
        task["note"] = self._audit(note, "created")
        data = {**self._auth(), "tasks": json.dumps([task]), "fields": TASK_FIELDS}
        created = self._check(await self._json("POST", f"{TOODLEDO_API}/tasks/add.php", data=data))
        if not created or "id" not in created[0]:
            raise ServiceError("task manager did not return the new task")
        return created[0]["id"]

    async def triage_batch(self, count: int = 10, today: Optional[date] = None) -> List[Task]:
        """
        Pick the next tasks to triage, skipping anything already triaged.

        Roughly 60% "treadmill" tasks (dated, but added three or more months
        ago and still open) and 20% each of undated standby tasks older and
        younger than a year.
        """
        today = today or datetime.now(timezone.utc).date()
        candidates = [t for t in await self.list_tasks() if not t.is_triaged]

        def age_days(t: Task) -> int:
            return (today - t.added_on).days if t.added_on else 0

        treadmill = sorted(
            (t for t in candidates if t.duedate and age_days(t) >= 90), key=age_days, reverse=True
        )
        standby = [t for t in candidates if not t.duedate]
        old_standby = sorted((t for t in standby if age_days(t) > 365), key=age_days, reverse=True)
        new_standby = sorted((t for t in standby if age_days(t) <= 365), key=age_days, reverse=True)

        n_standby = max(count // 5, 1) if count > 1 else 0
        n_treadmill = count - 2 * n_standby
        batch = treadmill[:n_treadmill] + old_standby[:n_standby] + new_standby[:n_standby]
        # Backfill from whatever is left when a bucket runs short
        if len(batch) < count:
            chosen = {t.id for t in batch}
            rest = [t for t in treadmill + old_standby + new_standby if t.id not in chosen]
            batch.extend(rest[: count - len(batch)])
        return batch[:count]

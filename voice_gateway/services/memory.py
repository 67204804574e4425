"""
File-backed assistant memory and the request queue for the text assistant.

All file I/O is synchronous and is pushed onto a worker thread with
``asyncio.to_thread`` so the event loop keeps relaying audio.
"""

import asyncio
import logging
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import List, Optional

from voice_gateway.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class MemoryStore:
    def __init__(self, memory_dir: Path, longterm_path: Path, tz: tzinfo = timezone.utc):
        self.memory_dir = Path(memory_dir)
        self.longterm_path = Path(longterm_path)
        self.tz = tz

    def _write_daily(self, content: str, now: datetime) -> Path:
        local = now.astimezone(self.tz)
        day = local.strftime("%Y-%m-%d")
        path = self.memory_dir / f"{day}.md"
        entry = f"\n\n## Voice Note ({local.strftime('%H:%M')})\n{content}\n"
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        if path.exists():
            with open(path, "a", encoding="utf-8") as f:
                f.write(entry)
        else:
            path.write_text(f"# {day}\n{entry}", encoding="utf-8")
        return path

    def _write_longterm(self, content: str) -> Path:
        existing = ""
        if self.longterm_path.exists():
            existing = self.longterm_path.read_text(encoding="utf-8").rstrip()
        self.longterm_path.parent.mkdir(parents=True, exist_ok=True)
        prefix = f"{existing}\n\n" if existing else ""
        self.longterm_path.write_text(f"{prefix}{content}\n", encoding="utf-8")
        return self.longterm_path

    def _search(self, query: str, limit: int) -> List[str]:
        terms = [t for t in query.lower().split() if t]
        if not terms:
            return []
        files = [self.longterm_path] if self.longterm_path.exists() else []
        if self.memory_dir.exists():
            files.extend(sorted(self.memory_dir.rglob("*.md"), reverse=True))

        scored = []
        for path in files:
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except OSError as e:
                logger.warning(f"Skipping unreadable memory file {path}: {e}")
                continue
            for number, line in enumerate(lines, start=1):
                text = line.lower()
                hits = sum(1 for t in terms if t in text)
                if hits:
                    scored.append((hits, path, number, line.strip()))
        # Most terms matched first; newer daily files already come first
        scored.sort(key=lambda s: -s[0])
        base = self.memory_dir.parent
        results = []
        for _, path, number, line in scored[:limit]:
            try:
                name = path.relative_to(base)
            except ValueError:
                name = path.name
            results.append(f"{name}:{number}: {line}")
        return results

    async def write_daily(self, content: str, now: Optional[datetime] = None) -> Path:
        return await asyncio.to_thread(self._write_daily, content, now or datetime.now(timezone.utc))

    async def write_longterm(self, content: str) -> Path:
        return await asyncio.to_thread(self._write_longterm, content)

    async def search(self, query: str, limit: int = 5) -> List[str]:
        return await asyncio.to_thread(self._search, query, limit)


class RequestLog:
    """Append-only log the text assistant picks up after the call."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _append(self, message: str, now: datetime) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"[{now.isoformat()}] Voice call request: {message}\n")

    async def append(self, message: str, now: Optional[datetime] = None) -> None:
        await asyncio.to_thread(self._append, message, now or datetime.now(timezone.utc))

"""Recent text-chat context, read from the chat assistant's JSONL transcript."""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.errors import ServiceError

logger = logging.getLogger(LOGGER_NAME)


def _parse_time(value) -> Optional[datetime]:
    if isinstance(value, (int, float)):
        # Seconds or milliseconds since the epoch
        return datetime.fromtimestamp(value / 1000 if value > 1e12 else value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class TelegramContextReader:
    def __init__(self, path: Optional[Path], days: int = 2):
        self.path = Path(path) if path else None
        self.days = days

    def _read(self, limit: int, now: datetime) -> List[str]:
        if self.path is None:
            raise ServiceError("chat transcript is not configured")
        if not self.path.exists():
            return []
        cutoff = now - timedelta(days=self.days)
        lines = []
        with open(self.path, encoding="utf-8") as f:
            for raw in f:
                try:
                    entry = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if not isinstance(entry, dict):
                    continue
                text = (entry.get("text") or "").strip()
                when = _parse_time(entry.get("timestamp"))
                if not text or when is None or when < cutoff:
                    continue
                sender = entry.get("sender") or entry.get("role") or "unknown"
                lines.append(f"[{when.strftime('%m-%d %H:%M')}] {sender}: {text}")
        return lines[-limit:]

    async def recent(self, limit: int = 20, now: Optional[datetime] = None) -> List[str]:
        """The last ``limit`` messages from the past ``days`` days, oldest first."""
        return await asyncio.to_thread(self._read, limit, now or datetime.now(timezone.utc))

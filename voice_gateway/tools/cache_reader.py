"""
Reader for the precomputed briefing cache.

Returns a snapshot only while it is fresh; a missing, unreadable or stale
file reads as a cache miss so callers fall back to the live service.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from voice_gateway.config.constants import CACHE_MAX_AGE_SECONDS, LOGGER_NAME
from voice_gateway.models.cache import CacheSnapshot

logger = logging.getLogger(LOGGER_NAME)


class CacheReader:
    def __init__(self, path: Path, max_age_seconds: int = CACHE_MAX_AGE_SECONDS):
        self.path = Path(path)
        self.max_age = timedelta(seconds=max_age_seconds)

    def read(self, now: Optional[datetime] = None) -> Optional[CacheSnapshot]:
        """
        Load the snapshot if it exists and is within the freshness window.

        Args:
            now: Reference time (UTC); defaults to the current time

        Returns:
            The snapshot, or None on a miss
        """
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            snapshot = CacheSnapshot.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Cache read error: {e}")
            return None

        timestamp = snapshot.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        age = now - timestamp
        if age > self.max_age:
            logger.info(f"Cache stale ({int(age.total_seconds() // 60)} min old)")
            return None
        return snapshot

"""
Model of the precomputed briefing cache.

A background job (outside this service) writes a JSON snapshot of weather,
calendar and task summaries. The gateway only reads it.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CalendarSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    today: Optional[str] = None
    tomorrow: Optional[str] = None


class VoiceSummaries(BaseModel):
    """Pre-rendered, voice-friendly text blocks."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    weather: Optional[str] = None
    calendar: Optional[CalendarSummary] = None
    tasks: Optional[str] = None
    sitting: Optional[str] = None
    screen_time: Optional[str] = Field(None, alias="screenTime")
    emails: Optional[str] = None
    school_emails: Optional[str] = Field(None, alias="schoolEmails")


class CachedEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: Optional[str] = None
    start: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: Optional[str] = None


class CachedCalendar(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    events_with_details: List[CachedEvent] = Field(default_factory=list, alias="eventsWithDetails")


class CachedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    calendar: Optional[CachedCalendar] = None


class CacheSnapshot(BaseModel):
    """Timestamped briefing snapshot."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    timestamp: datetime
    voice_summaries: Optional[VoiceSummaries] = Field(None, alias="voiceSummaries")
    data: Optional[CachedData] = None

    @property
    def detailed_events(self) -> List[CachedEvent]:
        if self.data and self.data.calendar:
            return self.data.calendar.events_with_details
        return []

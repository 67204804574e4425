"""
The set of service clients handed to the tool executor.
"""

from dataclasses import dataclass, fields
from typing import Optional

import httpx

from voice_gateway.config.settings import Settings
from voice_gateway.services.google import GmailClient, GoogleAuth, GoogleCalendarClient
from voice_gateway.services.http import DEFAULT_HTTP_TIMEOUT
from voice_gateway.services.memory import MemoryStore, RequestLog
from voice_gateway.services.tasks import ToodledoClient
from voice_gateway.services.telegram import TelegramContextReader
from voice_gateway.services.weather import WeatherClient
from voice_gateway.services.web_search import BraveSearchClient


@dataclass
class ToolServices:
    weather: WeatherClient
    search: BraveSearchClient
    tasks: ToodledoClient
    calendar: GoogleCalendarClient
    email: GmailClient
    memory: MemoryStore
    requests: RequestLog
    telegram: TelegramContextReader

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "ToolServices":
        """Wire every client to one shared connection pool."""
        http = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        auth = GoogleAuth(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_refresh_token,
            http_client=http,
        )
        return cls(
            weather=WeatherClient(http_client=http),
            search=BraveSearchClient(settings.brave_api_key, http_client=http),
            tasks=ToodledoClient(
                settings.toodledo_access_token, settings.attribution_label, http_client=http
            ),
            calendar=GoogleCalendarClient(
                auth, settings.calendar_id, settings.calendar_utc_offset, http_client=http
            ),
            email=GmailClient(auth, http_client=http),
            memory=MemoryStore(
                settings.memory_dir, settings.longterm_memory_path, tz=settings.local_timezone
            ),
            requests=RequestLog(settings.voice_requests_log),
            telegram=TelegramContextReader(settings.telegram_transcript_path),
        )

    async def aclose(self) -> None:
        """Close the HTTP pools (shared pools are closed once)."""
        closed = set()
        for f in fields(self):
            client = getattr(self, f.name)
            http = getattr(client, "_http", None)
            if http is not None and id(http) not in closed:
                closed.add(id(http))
                await http.aclose()

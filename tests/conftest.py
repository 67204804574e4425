import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocket

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.config.settings import Settings
from voice_gateway.services.container import ToolServices
from voice_gateway.services.google import GmailClient, GoogleCalendarClient
from voice_gateway.services.memory import MemoryStore, RequestLog
from voice_gateway.services.tasks import ToodledoClient
from voice_gateway.services.telegram import TelegramContextReader
from voice_gateway.services.weather import WeatherClient
from voice_gateway.services.web_search import BraveSearchClient

OWNER_PHONE = "+15551234567"
STRANGER_PHONE = "+15559876543"


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    app_logger = logging.getLogger(LOGGER_NAME)
    for handler in app_logger.handlers[:]:
        app_logger.removeHandler(handler)
    app_logger.propagate = True
    app_logger.setLevel(logging.NOTSET)
    yield


@pytest.fixture
def settings(tmp_path):
    return Settings(
        openai_api_key="sk-test",
        twilio_account_sid="ACtest",
        twilio_auth_token="twilio-token",
        phone_number_from="+15550000000",
        domain="voice.example.com",
        owner_phone=OWNER_PHONE,
        owner_name="Paul",
        owner_email="paul@example.com",
        assistant_name="Henry",
        assistant_email="henry@example.com",
        safe_word="bluebird",
        workspace_dir=tmp_path,
        calendar_utc_offset="+00:00",
    )


@pytest.fixture
def services():
    return ToolServices(
        weather=MagicMock(spec=WeatherClient),
        search=MagicMock(spec=BraveSearchClient),
        tasks=MagicMock(spec=ToodledoClient),
        calendar=MagicMock(spec=GoogleCalendarClient),
        email=MagicMock(spec=GmailClient),
        memory=MagicMock(spec=MemoryStore),
        requests=MagicMock(spec=RequestLog),
        telegram=MagicMock(spec=TelegramContextReader),
    )


@pytest.fixture
def websocket():
    return AsyncMock(spec=WebSocket)


class FakeUpstream:
    """Stand-in for the realtime model connection; tests push server events into it."""

    def __init__(self, connected=True):
        self.connected = connected
        self.open = False
        self.sent = []
        self.closed = False
        self._events = asyncio.Queue()

    async def connect(self):
        self.open = self.connected
        return self.connected

    async def send_event(self, event):
        if not self.open or self.closed:
            return False
        self.sent.append(event)
        return True

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    def push(self, event):
        self._events.put_nowait(event)

    async def close(self):
        if not self.closed:
            self.closed = True
            self._events.put_nowait(None)

    def sent_types(self):
        return [e["type"] for e in self.sent]


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


async def wait_until(predicate, timeout=2.0):
    """Poll ``predicate`` on the event loop until it holds or the timeout passes."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)

import base64
import json
from datetime import datetime, timedelta, timezone
from email import message_from_bytes

import httpx
import pytest

from voice_gateway.errors import ServiceError
from voice_gateway.services.container import ToolServices
from voice_gateway.services.google import (
    GmailClient,
    GoogleAuth,
    GoogleCalendarClient,
    strip_html,
)
from voice_gateway.services.memory import MemoryStore, RequestLog
from voice_gateway.services.summarizer import CallSummarizer
from voice_gateway.services.telegram import TelegramContextReader
from voice_gateway.services.weather import WeatherClient
from voice_gateway.services.web_search import BraveSearchClient

NOW = datetime(2025, 3, 14, 17, 5, tzinfo=timezone.utc)


def mock_http(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_daily_memory(tmp_path):
    pacific = timezone(-timedelta(hours=8))
    store = MemoryStore(tmp_path / "memory", tmp_path / "MEMORY.md", tz=pacific)

    path = await store.write_daily("Bought a new bike", now=NOW)
    await store.write_daily("Bike needs a lock", now=NOW + timedelta(minutes=10))

    assert path == tmp_path / "memory" / "2025-03-14.md"
    assert path.read_text(encoding="utf-8") == (
        "# 2025-03-14\n\n\n## Voice Note (09:05)\nBought a new bike\n"
        "\n\n## Voice Note (09:15)\nBike needs a lock\n"
    )


@pytest.mark.asyncio
async def test_longterm_memory_and_search(tmp_path):
    store = MemoryStore(tmp_path / "memory", tmp_path / "MEMORY.md")
    (tmp_path / "MEMORY.md").write_text("# Memory\n\n- Prefers window seats\n\n\n", encoding="utf-8")

    await store.write_longterm("- Allergic to cats")
    await store.write_daily("Cats at the party, bring allergy pills", now=NOW)

    assert (tmp_path / "MEMORY.md").read_text(encoding="utf-8") == (
        "# Memory\n\n- Prefers window seats\n\n- Allergic to cats\n"
    )
    results = await store.search("allergic cats")
    assert results[0] == "MEMORY.md:5: - Allergic to cats"
    assert results[1].startswith("memory/2025-03-14.md:")
    assert await store.search("   ") == []


@pytest.mark.asyncio
async def test_request_log(tmp_path):
    log = RequestLog(tmp_path / "voice-requests.log")
    await log.append("Draft the newsletter", now=NOW)
    assert log.path.read_text(encoding="utf-8") == (
        "[2025-03-14T17:05:00+00:00] Voice call request: Draft the newsletter\n"
    )


@pytest.mark.asyncio
async def test_telegram_context(tmp_path):
    path = tmp_path / "chat.jsonl"
    lines = [
        {"timestamp": (NOW - timedelta(days=3)).isoformat(), "sender": "Paul", "text": "too old"},
        {"timestamp": (NOW - timedelta(hours=2)).isoformat(), "sender": "Paul", "text": "Book the vet"},
        "not an object",
        {"timestamp": int((NOW - timedelta(hours=1)).timestamp() * 1000), "role": "assistant", "text": "Done"},
    ]
    path.write_text("\n".join(json.dumps(x) for x in lines) + "\n{broken\n", encoding="utf-8")

    reader = TelegramContextReader(path)
    assert await reader.recent(now=NOW) == [
        "[03-14 15:05] Paul: Book the vet",
        "[03-14 16:05] assistant: Done",
    ]
    assert await reader.recent(limit=1, now=NOW) == ["[03-14 16:05] assistant: Done"]


@pytest.mark.asyncio
async def test_telegram_context_unconfigured(tmp_path):
    with pytest.raises(ServiceError):
        await TelegramContextReader(None).recent()
    assert await TelegramContextReader(tmp_path / "missing.jsonl").recent() == []


@pytest.mark.asyncio
async def test_weather():
    def handler(request):
        assert request.url.path == "/North Vancouver"
        assert request.url.params["format"] == "3"
        return httpx.Response(200, text="North Vancouver: ☁️ +9°C\n")

    client = WeatherClient(http_client=mock_http(handler))
    assert await client.current() == "North Vancouver: ☁️ +9°C"


@pytest.mark.asyncio
async def test_weather_unreachable():
    def handler(request):
        raise httpx.ConnectError("no route to host")

    client = WeatherClient(http_client=mock_http(handler))
    with pytest.raises(ServiceError, match="weather unreachable"):
        await client.current("Oslo")


@pytest.mark.asyncio
async def test_web_search():
    def handler(request):
        assert request.headers["X-Subscription-Token"] == "brave-key"
        assert request.url.params["q"] == "tide times"
        return httpx.Response(
            200,
            json={"web": {"results": [{"title": "Tides", "description": "Today", "url": "https://t.example"}, {}]}},
        )

    client = BraveSearchClient("brave-key", http_client=mock_http(handler))
    results = await client.search("tide times")
    assert [r.title for r in results] == ["Tides"]

    with pytest.raises(ServiceError, match="not configured"):
        await BraveSearchClient(None, http_client=mock_http(handler)).search("x")


@pytest.mark.asyncio
async def test_summarizer_writes_summary(tmp_path):
    transcript = tmp_path / "2025-03-14T09-30-00.txt"
    transcript.write_text("[CALLER] Add milk\n[HENRY] Added.", encoding="utf-8")

    def handler(request):
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][1]["content"] == "[CALLER] Add milk\n[HENRY] Added."
        return httpx.Response(200, json={"choices": [{"message": {"content": "- Milk added to list\n"}}]})

    summarizer = CallSummarizer("sk-test", "gpt-4o-mini", "Paul", "Henry", http_client=mock_http(handler))
    out = await summarizer.summarize(transcript)

    assert out == tmp_path / "2025-03-14T09-30-00.txt.summary.md"
    assert out.read_text(encoding="utf-8") == "- Milk added to list\n"


@pytest.mark.asyncio
async def test_summarizer_unexpected_response(tmp_path):
    transcript = tmp_path / "t.txt"
    transcript.write_text("[CALLER] hi", encoding="utf-8")
    summarizer = CallSummarizer(
        "sk-test", "gpt-4o-mini", "Paul", "Henry", http_client=mock_http(lambda r: httpx.Response(200, json={}))
    )
    with pytest.raises(ServiceError, match="unexpected response"):
        await summarizer.summarize(transcript)


def google_handler(calls):
    def handler(request):
        calls.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "ya29.token", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer ya29.token"
        if request.method == "PATCH":
            return httpx.Response(200, json={"id": "ev1", **json.loads(request.content)})
        if request.url.path.endswith("/events"):
            return httpx.Response(
                200,
                json={"items": [{"id": "ev1", "summary": "Dentist", "start": {"dateTime": "2025-03-14T15:00:00-08:00"}}]},
            )
        if request.url.path.endswith("/messages/send"):
            return httpx.Response(200, json={"id": "sent1"})
        return httpx.Response(404)

    return handler


@pytest.mark.asyncio
async def test_google_token_is_cached():
    calls = []
    http = mock_http(google_handler(calls))
    auth = GoogleAuth("id", "secret", "refresh", http_client=http)
    calendar = GoogleCalendarClient(auth, "primary", "-08:00", http_client=http)

    await calendar.list_events(now=NOW)
    events = await calendar.list_events(days=7, query="dentist", now=NOW)

    assert [r.url.host for r in calls].count("oauth2.googleapis.com") == 1
    assert events[0].line() == "2025-03-14T15:00:00-08:00  Dentist"
    assert calls[-1].url.params["q"] == "dentist"
    assert calls[-1].url.params["timeMin"] == "2025-03-14T00:00:00+00:00"


@pytest.mark.asyncio
async def test_google_unconfigured():
    auth = GoogleAuth(None, None, None, http_client=mock_http(lambda r: httpx.Response(500)))
    with pytest.raises(ServiceError, match="google account is not configured"):
        await auth.headers()


@pytest.mark.asyncio
async def test_calendar_update_applies_offset():
    calls = []
    http = mock_http(google_handler(calls))
    calendar = GoogleCalendarClient(GoogleAuth("id", "secret", "refresh", http_client=http), "primary", "-08:00", http_client=http)

    await calendar.update_event("ev1", {"start": "2025-03-14T16:00:00", "summary": "Dentist (moved)"})

    patch = json.loads(calls[-1].content)
    assert patch == {"start": {"dateTime": "2025-03-14T16:00:00-08:00"}, "summary": "Dentist (moved)"}
    assert calls[-1].url.params["sendUpdates"] == "all"
    assert calendar.local_time("2025-03-14T16:00:00Z") == "2025-03-14T16:00:00Z"


@pytest.mark.asyncio
async def test_gmail_send():
    calls = []
    http = mock_http(google_handler(calls))
    gmail = GmailClient(GoogleAuth("id", "secret", "refresh", http_client=http), http_client=http)

    assert await gmail.send("paul@example.com", "Fwd: Hi", "Body text", sender="henry@example.com") == "sent1"

    raw = json.loads(calls[-1].content)["raw"]
    message = message_from_bytes(base64.urlsafe_b64decode(raw))
    assert message["To"] == "paul@example.com"
    assert message["From"] == "henry@example.com"
    assert message["Subject"] == "Fwd: Hi"


def test_strip_html():
    assert strip_html("<p>Bring&nbsp;the <b>card</b></p>\n<br>") == "Bring the card"


@pytest.mark.asyncio
async def test_container_closes_shared_pool(settings):
    http = mock_http(lambda r: httpx.Response(200))
    services = ToolServices.from_settings(settings, http_client=http)

    assert services.tasks.attribution_label == "VoiceHenry"
    assert services.memory.memory_dir == settings.memory_dir
    await services.aclose()
    assert http.is_closed

"""
Google Calendar and Gmail clients over the REST APIs.

Both share a ``GoogleAuth`` that exchanges a long-lived OAuth refresh token
for short-lived access tokens and caches them until shortly before expiry.
"""

import base64
import html
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.errors import ServiceError
from voice_gateway.services.http import HttpService

logger = logging.getLogger(LOGGER_NAME)

TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GMAIL_API = "https://gmail.googleapis.com/gmail/v1"


class GoogleAuth(HttpService):
    service_name = "google auth"

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(http_client)
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self._token: Optional[str] = None
        self._expires_at = 0.0

    async def headers(self) -> Dict[str, str]:
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise ServiceError("google account is not configured")
        if self._token is None or time.monotonic() >= self._expires_at:
            data = await self._json(
                "POST",
                TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            self._token = data["access_token"]
            self._expires_at = time.monotonic() + int(data.get("expires_in", 3600)) - 60
        return {"Authorization": f"Bearer {self._token}"}


def strip_html(text: str) -> str:
    """Flatten an HTML fragment to a single line of plain text."""
    text = re.sub(r"<[^>]*>", " ", text)
    text = html.unescape(text).replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


def render_event_details(
    summary: Optional[str],
    when: Optional[str],
    location: Optional[str] = None,
    description: Optional[str] = None,
    attendees: Optional[str] = None,
) -> str:
    lines = [f"EVENT: {summary or 'Untitled'}", f"WHEN: {when or 'Unknown'}"]
    if location:
        lines.append(f"WHERE: {location}")
    if description:
        lines.append(f"DESCRIPTION: {strip_html(description)}")
    else:
        lines.append("DESCRIPTION: No description set.")
    if attendees:
        lines.append(f"ATTENDEES: {attendees}")
    return "\n".join(lines) + "\n"


class CalendarEvent(BaseModel):
    id: str
    summary: str = "Untitled"
    start: Dict[str, Any] = {}
    end: Dict[str, Any] = {}
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: List[Dict[str, Any]] = []

    @property
    def start_text(self) -> str:
        return self.start.get("dateTime") or self.start.get("date") or "Unknown"

    def line(self) -> str:
        where = f" @ {self.location}" if self.location else ""
        return f"{self.start_text}  {self.summary}{where}"

    def details(self) -> str:
        names = ", ".join(a.get("displayName") or a.get("email", "") for a in self.attendees)
        return render_event_details(
            self.summary, self.start_text, self.location, self.description, names
        )


class GoogleCalendarClient(HttpService):
    service_name = "calendar"

    def __init__(self, auth: GoogleAuth, calendar_id: Optional[str], utc_offset: str, http_client=None):
        super().__init__(http_client)
        self.auth = auth
        self.calendar_id = calendar_id
        self.utc_offset = utc_offset

    def _events_url(self, event_id: Optional[str] = None) -> str:
        if not self.calendar_id:
            raise ServiceError("calendar is not configured")
        url = f"{CALENDAR_API}/calendars/{quote(self.calendar_id)}/events"
        return f"{url}/{quote(event_id)}" if event_id else url

    def local_time(self, value: str) -> str:
        """Attach the configured UTC offset to a naive ``YYYY-MM-DDTHH:MM:SS`` time."""
        return value if re.search(r"([+-]\d\d:\d\d|Z)$", value) else f"{value}{self.utc_offset}"

    async def list_events(
        self, days: int = 2, query: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[CalendarEvent]:
        now = now or datetime.now(timezone.utc)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        params = {
            "timeMin": start.isoformat(),
            "timeMax": (start + timedelta(days=days)).isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if query:
            params["q"] = query
        data = await self._json(
            "GET", self._events_url(), params=params, headers=await self.auth.headers()
        )
        return [CalendarEvent.model_validate(e) for e in (data or {}).get("items", [])]

    async def find_event(self, query: str, days: int = 14) -> Optional[CalendarEvent]:
        events = await self.list_events(days=days, query=query)
        return events[0] if events else None

    async def create_event(
        self,
        summary: str,
        start: str,
        end: str,
        attendees: Optional[List[str]] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> CalendarEvent:
        body: Dict[str, Any] = {
            "summary": summary,
            "start": {"dateTime": self.local_time(start)},
            "end": {"dateTime": self.local_time(end)},
        }
        if attendees:
            body["attendees"] = [{"email": a} for a in attendees]
        if description:
            body["description"] = description
        if location:
            body["location"] = location
        data = await self._json(
            "POST",
            self._events_url(),
            params={"sendUpdates": "all"},
            json=body,
            headers=await self.auth.headers(),
        )
        return CalendarEvent.model_validate(data)

    async def update_event(self, event_id: str, changes: Dict[str, Any]) -> CalendarEvent:
        patch: Dict[str, Any] = {}
        for key, value in changes.items():
            if key in ("start", "end"):
                patch[key] = {"dateTime": self.local_time(value)}
            else:
                patch[key] = value
        data = await self._json(
            "PATCH",
            self._events_url(event_id),
            params={"sendUpdates": "all"},
            json=patch,
            headers=await self.auth.headers(),
        )
        return CalendarEvent.model_validate(data)

    async def delete_event(self, event_id: str) -> None:
        await self._request(
            "DELETE",
            self._events_url(event_id),
            params={"sendUpdates": "all"},
            headers=await self.auth.headers(),
        )


class EmailMessageSummary(BaseModel):
    id: str
    sender: str = "Unknown"
    subject: str = "No subject"
    date: str = ""
    snippet: str = ""
    body: str = ""


def _header(payload: Dict[str, Any], name: str) -> str:
    for h in payload.get("headers", []):
        if h.get("name", "").lower() == name.lower():
            return h.get("value", "")
    return ""


def _decode(data: str) -> str:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode("utf-8", errors="replace")


def _plain_body(payload: Dict[str, Any]) -> str:
    """Depth-first search for the text/plain part; fall back to flattened HTML."""
    mime = payload.get("mimeType", "")
    data = (payload.get("body") or {}).get("data")
    if mime == "text/plain" and data:
        return _decode(data)
    html_body = ""
    for part in payload.get("parts", []) or []:
        text = _plain_body(part)
        if text and part.get("mimeType") != "text/html":
            return text
        html_body = html_body or text
    if mime == "text/html" and data:
        return strip_html(_decode(data))
    return html_body


class GmailClient(HttpService):
    service_name = "email"

    def __init__(self, auth: GoogleAuth, http_client=None):
        super().__init__(http_client)
        self.auth = auth

    def _url(self, mailbox: str, path: str) -> str:
        return f"{GMAIL_API}/users/{quote(mailbox)}/{path}"

    async def get_message(self, message_id: str, mailbox: str = "me") -> EmailMessageSummary:
        data = await self._json(
            "GET",
            self._url(mailbox, f"messages/{quote(message_id)}"),
            params={"format": "full"},
            headers=await self.auth.headers(),
        )
        payload = data.get("payload", {})
        sender = re.sub(r"<[^>]+>", "", _header(payload, "From")).replace('"', "").strip()
        return EmailMessageSummary(
            id=data["id"],
            sender=sender or "Unknown",
            subject=_header(payload, "Subject") or "No subject",
            date=_header(payload, "Date"),
            snippet=html.unescape(data.get("snippet", "")),
            body=_plain_body(payload),
        )

    async def search(self, query: str, mailbox: str = "me", max_results: int = 5) -> List[EmailMessageSummary]:
        data = await self._json(
            "GET",
            self._url(mailbox, "messages"),
            params={"q": query, "maxResults": max_results},
            headers=await self.auth.headers(),
        )
        ids = [m["id"] for m in (data or {}).get("messages", [])][:max_results]
        return [await self.get_message(i, mailbox) for i in ids]

    async def send(self, to: str, subject: str, body: str, sender: Optional[str] = None) -> str:
        message = EmailMessage()
        message["To"] = to
        message["Subject"] = subject
        if sender:
            message["From"] = sender
        message.set_content(body)
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
        data = await self._json(
            "POST",
            self._url("me", "messages/send"),
            json={"raw": raw},
            headers=await self.auth.headers(),
        )
        logger.info(f"Email sent to {to}: {subject}")
        return (data or {}).get("id", "")

"""Live weather lookups via wttr.in, used when the briefing cache misses."""

from urllib.parse import quote

from voice_gateway.services.http import HttpService

WTTR_URL = "https://wttr.in"


class WeatherClient(HttpService):
    service_name = "weather"

    def __init__(self, default_location: str = "North Vancouver", http_client=None):
        super().__init__(http_client)
        self.default_location = default_location

    async def current(self, location: str = None) -> str:
        """One-line conditions for a location, e.g. ``Paris: ⛅️ +12°C``."""
        loc = location or self.default_location
        response = await self._request("GET", f"{WTTR_URL}/{quote(loc)}", params={"format": "3"})
        return response.text.strip()

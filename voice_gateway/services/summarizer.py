"""
Post-call summarization.

Sends a finished call transcript to the OpenAI Chat Completions API and
writes the result next to it as ``<transcript>.summary.md``.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.errors import ServiceError
from voice_gateway.services.http import HttpService

logger = logging.getLogger(LOGGER_NAME)

CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
SUMMARY_TIMEOUT_SECONDS = 60.0

SUMMARY_PROMPT = (
    "Summarize this phone call between {owner} and the voice assistant {assistant}. "
    "List decisions made, tasks created or changed, follow-ups {assistant} promised, "
    "and anything worth remembering. Be concise and use markdown bullets."
)


class CallSummarizer(HttpService):
    service_name = "summarizer"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        owner_name: str,
        assistant_name: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(http_client or httpx.AsyncClient(timeout=SUMMARY_TIMEOUT_SECONDS))
        self.api_key = api_key
        self.model = model
        self.prompt = SUMMARY_PROMPT.format(owner=owner_name, assistant=assistant_name)

    @staticmethod
    def summary_path(transcript_path: Path) -> Path:
        return transcript_path.with_name(f"{transcript_path.name}.summary.md")

    async def summarize(self, transcript_path: Path) -> Path:
        if not self.api_key:
            raise ServiceError("summarizer is not configured")
        transcript = await asyncio.to_thread(Path(transcript_path).read_text, encoding="utf-8")
        data = await self._json(
            "POST",
            CHAT_COMPLETIONS_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": self.prompt},
                    {"role": "user", "content": transcript},
                ],
            },
        )
        try:
            summary = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ServiceError("summarizer returned an unexpected response") from e
        out = self.summary_path(Path(transcript_path))
        await asyncio.to_thread(out.write_text, summary.strip() + "\n", encoding="utf-8")
        logger.info(f"Call summary written: {out}")
        return out

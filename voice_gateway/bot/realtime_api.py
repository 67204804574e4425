import asyncio
import json
import logging
import time
import traceback
from typing import Any, AsyncIterator, Dict

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidHandshake,
)
from websockets.protocol import State

from voice_gateway.config.constants import LOGGER_NAME, REALTIME_URL

logger = logging.getLogger(LOGGER_NAME)

CONNECTION_TIMEOUT = 30  # seconds
SEND_TIMEOUT = 5.0  # seconds

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio deltas
WS_MAX_QUEUE = 32  # Small queue to prevent buffering
WS_PING_INTERVAL = 5  # 5 seconds between pings


class RealtimeEventClient:
    """
    Client for one OpenAI Realtime API session over WebSocket.

    Events are JSON objects in both directions. Sending while the connection
    is not open drops the event (audio is at-most-once; there is no replay
    buffer and no automatic reconnection).
    """
    def __init__(self, api_key: str, model: str, url: str = REALTIME_URL):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.ws = None
        self._is_closing = False
        logger.info(f"RealtimeEventClient initialized with model: {model}")

    @property
    def is_open(self) -> bool:
        if self.ws is None or self._is_closing:
            return False
        return self.ws.state == State.OPEN

    async def connect(self) -> bool:
        """
        Connect to the OpenAI Realtime WebSocket endpoint.

        Returns:
            bool: True if connection was successful, False otherwise
        """
        if self._is_closing:
            logger.warning("Cannot connect - client is closing")
            return False

        url = f"{self.url}?model={self.model}"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            logger.info(f"Connecting to OpenAI Realtime API with model: {self.model}")
            connection_start = time.time()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    max_size=WS_MAX_SIZE,
                    max_queue=WS_MAX_QUEUE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=10,
                    compression=None,  # Disable compression for lower latency
                    additional_headers=headers,
                ),
                timeout=CONNECTION_TIMEOUT,
            )
            logger.debug(f"WebSocket connection established in {time.time() - connection_start:.2f} seconds")
            logger.info("Successfully connected to OpenAI Realtime API")
            return True
        except asyncio.TimeoutError:
            logger.error(f"Timeout while connecting to OpenAI Realtime API (after {CONNECTION_TIMEOUT}s)")
            return False
        except (OSError, InvalidHandshake) as e:
            logger.error(f"Failed to connect to OpenAI Realtime API: {e}")
            logger.debug(f"Connection error details: {traceback.format_exc()}")
            return False

    async def send_event(self, event: Dict[str, Any]) -> bool:
        """
        Send one client event.

        Args:
            event: The event object; serialized to JSON

        Returns:
            bool: True if the event was written, False if it was dropped
        """
        if not self.is_open:
            logger.debug(f"Dropping {event.get('type')} - realtime connection not open")
            return False
        try:
            await asyncio.wait_for(self.ws.send(json.dumps(event)), timeout=SEND_TIMEOUT)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timeout while sending {event.get('type')}")
            return False
        except ConnectionClosed as e:
            logger.warning(f"Connection closed while sending {event.get('type')}: {e}")
            return False

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield server events until the connection closes.

        Frames that are not JSON objects are logged and skipped.
        """
        if self.ws is None:
            logger.error("WebSocket not initialized for receive loop")
            return
        try:
            async for message in self.ws:
                if isinstance(message, bytes):
                    logger.debug(f"Ignoring binary frame of size {len(message)} bytes")
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"Received invalid JSON: {message[:100]}...")
                    continue
                if not isinstance(data, dict):
                    logger.warning(f"Received non-object event: {message[:100]}...")
                    continue
                yield data
        except ConnectionClosedOK:
            logger.info("Realtime connection closed normally")
        except ConnectionClosedError as e:
            logger.warning(f"Realtime connection closed unexpectedly: {e}")
        logger.info("Realtime receive loop exited")

    async def close(self) -> None:
        """Close the WebSocket connection."""
        self._is_closing = True
        if self.ws is not None:
            logger.info("Closing OpenAI Realtime client")
            try:
                await self.ws.close()
            except ConnectionClosed as e:
                logger.debug(f"Realtime connection already closed: {e}")
            logger.info("OpenAI Realtime client closed")

"""
WebSocket connection manager for Twilio Media Streams.

Each accepted media-stream connection is bound to the admitted call, given its
own realtime model session and relay, and torn down when the carrier hangs up.
"""

import logging
from typing import Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect

from voice_gateway.bot.realtime_api import RealtimeEventClient
from voice_gateway.bot.relay import RealtimeRelay
from voice_gateway.call_lifecycle import CallLifecycleManager
from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.config.settings import Settings
from voice_gateway.tools.executor import ToolExecutor

logger = logging.getLogger(LOGGER_NAME)

UpstreamFactory = Callable[[], RealtimeEventClient]


class MediaStreamManager:
    """Accepts media-stream WebSockets and runs one relay per connection.

    The carrier sends ``connected``, ``start``, ``media`` and ``stop`` frames;
    every frame is handed to the relay, and the loop ends only when the socket
    closes.
    """

    def __init__(
        self,
        settings: Settings,
        lifecycle: CallLifecycleManager,
        executor: ToolExecutor,
        upstream_factory: Optional[UpstreamFactory] = None,
    ):
        self.settings = settings
        self.lifecycle = lifecycle
        self.executor = executor
        self.upstream_factory = upstream_factory or (
            lambda: RealtimeEventClient(settings.openai_api_key, settings.realtime_model)
        )

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a media-stream connection throughout its lifecycle.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object

        This method:
        1. Accepts the WebSocket connection
        2. Binds it to the admitted call (or closes it if another stream is live)
        3. Feeds every frame to the relay until the carrier disconnects
        4. Closes the relay, which records the call and frees the slot
        """
        await websocket.accept()
        logger.info("Client connected to media stream")

        call = self.lifecycle.claim_for_stream()
        if call is None:
            await websocket.close()
            return

        relay = RealtimeRelay(
            websocket,
            call,
            self.upstream_factory(),
            self.executor,
            self.lifecycle,
            self.settings,
        )
        relay.start()
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    await relay.handle_media_message(text)
                except Exception as e:
                    logger.error(f"Error handling media frame: {e}", exc_info=True)
        except WebSocketDisconnect as e:
            logger.info(f"Client disconnected (code: {e.code})")
        except RuntimeError as e:
            # Starlette raises this when receiving on a socket that already closed
            logger.info(f"Media stream closed: {e}")
        finally:
            await relay.close()
            logger.info("Media stream connection closed")

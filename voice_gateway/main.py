"""
FastAPI server for the personal voice-assistant gateway.

This module builds the FastAPI application that Twilio talks to: the
incoming-call webhook answers with TwiML that opens a bidirectional media
stream, the media-stream WebSocket is bridged to the OpenAI Realtime API,
and a few HTTP endpoints expose status, outbound dialing and browser-client
tokens.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, Response
from twilio.base.exceptions import TwilioException

from voice_gateway.call_lifecycle import CallHistory, CallLifecycleManager
from voice_gateway.config.constants import LOGGER_NAME, UNKNOWN_CALLER
from voice_gateway.config.logging_config import configure_logging, install_crash_guards
from voice_gateway.config.settings import Settings
from voice_gateway.errors import ConfigurationError
from voice_gateway.services.container import ToolServices
from voice_gateway.services.summarizer import CallSummarizer
from voice_gateway.services.telephony import Telephony
from voice_gateway.tools.cache_reader import CacheReader
from voice_gateway.tools.executor import ToolExecutor
from voice_gateway.websocket_manager import MediaStreamManager, UpstreamFactory

logger = logging.getLogger(LOGGER_NAME)

APP_NAME = "Personal Voice Gateway"
APP_DESCRIPTION = "Bridge between Twilio Media Streams and the OpenAI Realtime API"
APP_VERSION = "1.0.0"


def create_app(
    settings: Settings,
    services: Optional[ToolServices] = None,
    telephony: Optional[Telephony] = None,
    summarizer: Optional[CallSummarizer] = None,
    upstream_factory: Optional[UpstreamFactory] = None,
) -> FastAPI:
    """
    Wire the application objects together and build the FastAPI app.

    Args:
        settings: Application settings
        services: Tool service clients (built from settings when omitted)
        telephony: Twilio helper (built from settings when omitted)
        summarizer: Post-call summarizer (built from settings when omitted)
        upstream_factory: Factory for realtime model clients, one per call

    Returns:
        FastAPI: The configured application
    """
    services = services or ToolServices.from_settings(settings)
    telephony = telephony or Telephony(settings)
    if summarizer is None and settings.openai_api_key:
        summarizer = CallSummarizer(
            settings.openai_api_key,
            settings.summary_model,
            settings.owner_name,
            settings.assistant_name,
        )

    history = CallHistory(settings.resolved_call_history_path).load()
    lifecycle = CallLifecycleManager(
        history,
        settings.resolved_transcripts_dir,
        settings.assistant_name,
        summarizer=summarizer,
    )
    executor = ToolExecutor(services, CacheReader(settings.resolved_cache_path), settings)
    media_streams = MediaStreamManager(settings, lifecycle, executor, upstream_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        install_crash_guards(asyncio.get_running_loop())
        lifecycle.start_watchdog()
        logger.info(f"{settings.assistant_name} voice gateway ready")
        logger.info(f"WebSocket: {settings.media_stream_url}")
        yield
        await lifecycle.stop_watchdog()
        await services.aclose()
        if summarizer is not None:
            await summarizer.aclose()

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.lifecycle = lifecycle
    app.state.executor = executor
    app.state.telephony = telephony

    @app.api_route("/incoming-call", methods=["GET", "POST"])
    async def incoming_call(request: Request):
        """Twilio voice webhook: admit the caller and open a media stream, or say we're busy."""
        caller = None
        if request.method == "POST":
            form = await request.form()
            caller = form.get("From")
        caller = caller or request.query_params.get("From") or UNKNOWN_CALLER
        logger.info(f"Incoming call from: {caller}")

        call = lifecycle.try_admit(str(caller))
        if call is None:
            return Response(content=telephony.busy_twiml(), media_type="text/xml")
        return Response(content=telephony.connect_twiml(call.caller), media_type="text/xml")

    @app.websocket("/media-stream")
    async def media_stream(websocket: WebSocket):
        """Bidirectional Twilio Media Streams endpoint."""
        await media_streams.handle_websocket(websocket)

    @app.get("/status")
    async def status():
        """Call activity summary for the dashboard."""
        return lifecycle.status()

    @app.post("/make-call")
    async def make_call(request: Request):
        """Dial out to ``to`` and bridge the answered call like an inbound one."""
        try:
            body = await request.json()
        except ValueError:
            body = {}
        to = body.get("to") if isinstance(body, dict) else None
        if not to:
            return JSONResponse({"error": 'Missing "to" phone number'}, status_code=400)

        call = lifecycle.try_admit(str(to))
        if call is None:
            return JSONResponse({"error": "A call is already in progress"}, status_code=409)
        try:
            call_sid = await telephony.originate_call(str(to))
        except (TwilioException, OSError) as e:
            logger.error(f"Call error: {e}")
            lifecycle.release(call)
            return JSONResponse({"error": str(e)}, status_code=500)
        return {"success": True, "callSid": call_sid}

    @app.get("/api/token")
    async def api_token():
        """Access token for the browser calling client."""
        try:
            return {"token": telephony.access_token()}
        except ConfigurationError as e:
            logger.error(f"Token error: {e}")
            return JSONResponse({"error": str(e)}, status_code=503)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring system status.

        Returns:
            dict: Status information indicating the server is operational.
        """
        return {
            "status": "healthy",
            "openai_api_key_configured": bool(settings.openai_api_key),
            "active_calls": 1 if lifecycle.active_call else 0,
        }

    @app.get("/")
    async def root():
        """Basic information about the API."""
        return {
            "name": APP_NAME,
            "description": APP_DESCRIPTION,
            "version": APP_VERSION,
            "endpoints": {
                "/incoming-call": "Twilio voice webhook (GET/POST)",
                "/media-stream": "WebSocket endpoint for Twilio Media Streams",
                "/status": "Call activity summary",
                "/make-call": "Start an outbound call (POST {\"to\": ...})",
                "/api/token": "Access token for the browser client",
                "/health": "Health check endpoint",
            },
        }

    return app


def run() -> None:
    """Entry point: load configuration, refuse to start without secrets, serve."""
    import uvicorn

    # Load environment variables from .env file if it exists
    env_path = Path(".") / ".env"
    if env_path.exists():
        dotenv.load_dotenv(env_path, override=True)

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.resolved_log_file)
    install_crash_guards()

    try:
        settings.validate_required()
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    app = create_app(settings)
    logger.info(f"Starting server on http://{settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        websocket_ping_interval=5,  # More frequent pings to keep connections alive
        websocket_max_size=16777216,  # 16MB - large enough for audio frames
        websocket_ping_timeout=20,  # Timeout for pings to detect dead connections
        http="h11",
    )


if __name__ == "__main__":
    run()

"""
Carrier-side helpers: TwiML documents, outbound dialing and browser tokens.

The Twilio REST client is synchronous, so outbound dialing runs on a worker
thread.
"""

import asyncio
import logging
from typing import Optional

from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import VoiceGrant
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.config.settings import Settings
from voice_gateway.errors import ConfigurationError

logger = logging.getLogger(LOGGER_NAME)

TOKEN_TTL_SECONDS = 3600


class Telephony:
    def __init__(self, settings: Settings, client: Optional[Client] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        return self._client

    def connect_twiml(self, caller: str, greeting: bool = True) -> str:
        """TwiML that bridges the call to our media-stream endpoint."""
        response = VoiceResponse()
        if greeting:
            response.say(f"Connecting you to {self.settings.assistant_name}.")
        connect = Connect()
        stream = connect.stream(url=self.settings.media_stream_url)
        stream.parameter(name="callerNumber", value=caller)
        response.append(connect)
        return str(response)

    def busy_twiml(self) -> str:
        response = VoiceResponse()
        response.say(
            f"Sorry, {self.settings.assistant_name} is on another call. Try again in a few minutes."
        )
        response.hangup()
        return str(response)

    async def originate_call(self, to: str) -> str:
        """Dial ``to`` and connect the answered call to the media stream; returns the call SID."""
        twiml = self.connect_twiml(to, greeting=False)
        call = await asyncio.to_thread(
            self.client.calls.create,
            to=to,
            from_=self.settings.phone_number_from,
            twiml=twiml,
        )
        logger.info(f"Outbound call to {to} started: {call.sid}")
        return call.sid

    def access_token(self) -> str:
        """Short-lived JWT that lets the browser client place calls through the TwiML app."""
        s = self.settings
        if not (s.twilio_api_key_sid and s.twilio_api_key_secret and s.twilio_twiml_app_sid):
            raise ConfigurationError("Browser calling is not configured (TWILIO_API_KEY_SID/SECRET, TWILIO_TWIML_APP_SID)")
        token = AccessToken(
            s.twilio_account_sid,
            s.twilio_api_key_sid,
            s.twilio_api_key_secret,
            identity=s.web_client_identity,
            ttl=TOKEN_TTL_SECONDS,
        )
        token.add_grant(
            VoiceGrant(outgoing_application_sid=s.twilio_twiml_app_sid, incoming_allow=False)
        )
        jwt = token.to_jwt()
        return jwt.decode("utf-8") if isinstance(jwt, bytes) else jwt

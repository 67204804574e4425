"""Exception hierarchy for the voice gateway."""


class VoiceGatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigurationError(VoiceGatewayError):
    """Required configuration is missing or inconsistent. Fatal at startup."""


class ServiceError(VoiceGatewayError):
    """An external productivity service returned an error or unusable data."""


class ToolExecutionError(VoiceGatewayError):
    """A tool could not complete; the message is read back to the caller."""

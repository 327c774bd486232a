"""Error taxonomy shared by the client, the control loop and the proxies."""

from __future__ import annotations


class VisionAssistError(Exception):
    """Base class for application errors."""


class InputUnavailable(VisionAssistError):
    """Camera or microphone missing, busy, or permission denied."""


class TransportError(VisionAssistError):
    """Proxy unreachable, non-2xx status, or malformed JSON body."""


class NetworkError(TransportError):
    """Transport failure or non-success HTTP status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class EmptyResponse(TransportError):
    """Endpoint answered but returned no usable text field."""


class ParseAmbiguity(VisionAssistError):
    """Model output does not match the expected COMMAND/BBOX schema."""


class UpstreamConfigError(VisionAssistError):
    """Proxy is missing the API key for its upstream provider."""

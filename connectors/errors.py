"""Exception hierarchy for the streaming core."""


class IrisError(Exception):
    """Base class for all errors raised by the chat core."""


class ConfigurationError(IrisError):
    """Unknown service type or missing/invalid configuration.

    Raised when a client is created, never from the streaming path.
    """


class TransportError(IrisError):
    """Connection failure or non-2xx response from a provider."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class FrameDecodeError(IrisError):
    """A single frame could not be decoded.

    Handled at frame level: the frame is dropped and the stream continues.
    """

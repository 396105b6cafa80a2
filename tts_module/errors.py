"""Exceptions raised on the caller side of the protocol.

The server never raises across the socket: provider failures travel as
:class:`~tts_module.protocol.types.ErrorKind` values inside terminal replies.
"""

from tts_module.protocol.types import ErrorKind


class TTSClientError(Exception):
    """Base class for client-side failures."""


class AckTimeoutError(TTSClientError):
    """The server did not acknowledge a request in time; the request was abandoned."""

    def __init__(self, kind: str, request_id: str, timeout: float) -> None:
        super().__init__(
            f"{kind} for request {request_id} not acknowledged within "
            f"{timeout * 1000:.0f} ms, TTS module may be closed"
        )
        self.kind = kind
        self.request_id = request_id
        self.timeout = timeout


class ConnectionLostError(TTSClientError):
    """The socket closed while the request was pending."""


class RequestFailedError(TTSClientError):
    """A terminal reply reported an error kind other than SUCCESS."""

    def __init__(self, operation: str, error: ErrorKind) -> None:
        super().__init__(f"{operation} failed: {error.value}")
        self.operation = operation
        self.error = error

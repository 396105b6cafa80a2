"""Binary framing for streamed audio.

A frame is ``b"$" + request_id + b"<|end_of_id|>" + payload``.  Frames are
sent out-of-band with respect to JSON replies; the end of a stream is
signalled by a ``generate_stream_done`` JSON reply, never by a frame.
"""

from collections.abc import Iterator

from tts_module.config import STREAM_CHUNK_SIZE
from tts_module.protocol.types import FRAME_HEADER, SENTINEL

_HEADER = FRAME_HEADER.encode("utf-8")
_SENTINEL = SENTINEL.encode("utf-8")


class FrameError(ValueError):
    """Raised when a binary message is not a well-formed audio frame."""


def encode_frame(request_id: str, payload: bytes) -> bytes:
    """Tag *payload* with *request_id*."""
    return _HEADER + request_id.encode("utf-8") + _SENTINEL + payload


def decode_frame(message: bytes) -> tuple[str, bytes]:
    """Split a frame into ``(request_id, payload)``.

    The first sentinel ends the id, so payload bytes may contain the
    sentinel sequence.
    """
    if not message.startswith(_HEADER):
        raise FrameError("binary message does not start with frame header")
    end = message.find(_SENTINEL, len(_HEADER))
    if end < 0:
        raise FrameError("binary message has no request id terminator")
    try:
        request_id = message[len(_HEADER):end].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FrameError(f"request id is not valid UTF-8: {exc}") from exc
    return request_id, message[end + len(_SENTINEL):]


def split_chunks(data: bytes, size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield consecutive slices of *data* no longer than *size* bytes."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    view = memoryview(data)
    for start in range(0, len(view), size):
        yield bytes(view[start:start + size])

"""Request correlation for both ends of the socket.

``ReplySender`` is the replying side: it tracks which request ids are
outstanding, emits at most one terminal reply per id and refuses frames for
requests that are already closed.

``PendingReplies`` is the calling side: a map from ``(reply kind, request
id)`` to a future, plus per-request stream callbacks for binary frames.  A
caller registers its waiters before sending, then races the acknowledgement
against a short timeout; when the timeout wins, every channel registered for
that request id is purged.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from tts_module.config import ACK_TIMEOUT
from tts_module.errors import AckTimeoutError
from tts_module.protocol.framing import FrameError, decode_frame, encode_frame
from tts_module.protocol.types import Reply, parse_reply

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]
SendBytes = Callable[[bytes], Awaitable[None]]
StreamCallback = Callable[[bytes], Any]


class ReplySender:
    """Serialises replies onto one connection and enforces the reply discipline."""

    def __init__(self, send_text: SendText, send_bytes: SendBytes) -> None:
        self._send_text = send_text
        self._send_bytes = send_bytes
        self._outstanding: set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def outstanding(self) -> frozenset[str]:
        """Request ids that have not received their terminal reply yet."""
        return frozenset(self._outstanding)

    def open(self, request_id: str) -> bool:
        """Mark *request_id* outstanding.  Returns False if it already is."""
        if request_id in self._outstanding:
            return False
        self._outstanding.add(request_id)
        return True

    def discard(self, request_id: str) -> None:
        """Forget *request_id*.  No-op if it is not outstanding."""
        self._outstanding.discard(request_id)

    async def send(self, reply: Reply) -> bool:
        """Send *reply* if its request is still open.

        A terminal reply closes the request, so a second terminal reply for
        the same id is dropped.  Returns whether the reply was sent.
        """
        if reply.request_id not in self._outstanding:
            logger.warning(
                "Dropping %s for request %s: request is not outstanding",
                reply.type,
                reply.request_id,
            )
            return False
        if reply.is_terminal:
            self._outstanding.discard(reply.request_id)
        payload = reply.model_dump_json(by_alias=True)
        async with self._lock:
            await self._send_text(payload)
        logger.debug("Sent %s for request %s", reply.type, reply.request_id)
        return True

    async def send_frame(self, request_id: str, payload: bytes) -> bool:
        """Send one binary audio frame tagged with *request_id*."""
        if request_id not in self._outstanding:
            logger.debug("Dropping frame for closed request %s", request_id)
            return False
        frame = encode_frame(request_id, payload)
        async with self._lock:
            await self._send_bytes(frame)
        return True


class PendingReplies:
    """Waiters for replies on the calling side of the socket."""

    def __init__(self) -> None:
        self._waiters: dict[tuple[str, str], asyncio.Future[Reply]] = {}
        self._streams: dict[str, StreamCallback] = {}

    def listen(self, kind: str, request_id: str) -> asyncio.Future[Reply]:
        """Register and return a future resolved by the next *kind* reply for *request_id*."""
        future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        self._waiters[(kind, request_id)] = future
        return future

    def listen_stream(self, request_id: str, callback: StreamCallback) -> None:
        """Route binary frames tagged with *request_id* to *callback*."""
        self._streams[request_id] = callback

    def remove(self, kind: str, request_id: str) -> None:
        future = self._waiters.pop((kind, request_id), None)
        if future is not None and not future.done():
            future.cancel()

    def remove_stream(self, request_id: str) -> None:
        self._streams.pop(request_id, None)

    def remove_all(self, request_id: str) -> None:
        """Purge every waiter and the stream subscription for *request_id*.  Idempotent."""
        for key in [key for key in self._waiters if key[1] == request_id]:
            self.remove(*key)
        self.remove_stream(request_id)

    @property
    def pending_count(self) -> int:
        return len(self._waiters) + len(self._streams)

    def dispatch(self, data: Any) -> bool:
        """Resolve the waiter matching a decoded JSON reply.

        Returns False (and logs) when the reply is malformed or nobody is
        waiting for it.
        """
        try:
            reply = parse_reply(data)
        except ValidationError as exc:
            logger.error("Received malformed reply from server: %s", exc)
            return False

        future = self._waiters.pop((reply.type, reply.request_id), None)
        if future is None or future.done():
            logger.warning(
                "Received unhandled %s for request %s. This might be due to an "
                "out-of-date client or module.",
                reply.type,
                reply.request_id,
            )
            return False
        future.set_result(reply)
        return True

    def dispatch_frame(self, message: bytes) -> bool:
        """Hand a binary frame's payload to its stream subscriber."""
        try:
            request_id, payload = decode_frame(message)
        except FrameError as exc:
            logger.error("Received unhandled binary message: %s", exc)
            return False

        callback = self._streams.get(request_id)
        if callback is None:
            logger.debug("No stream listener for request %s", request_id)
            return False
        try:
            callback(payload)
        except Exception:
            logger.exception("Stream callback for request %s raised", request_id)
            return False
        return True

    def fail_all(self, exc: BaseException) -> None:
        """Fail every pending waiter with *exc* and drop all subscriptions."""
        for future in self._waiters.values():
            if not future.done():
                future.set_exception(exc)
        self._waiters.clear()
        self._streams.clear()

    async def wait_for_ack(
        self,
        kind: str,
        request_id: str,
        ack: asyncio.Future[Reply],
        timeout: float = ACK_TIMEOUT,
    ) -> Reply:
        """Race *ack* against *timeout*.

        If the timer wins the request is abandoned: all of its channels are
        purged and :class:`AckTimeoutError` is raised.
        """
        done, _ = await asyncio.wait({ack}, timeout=timeout)
        if not done:
            self.remove_all(request_id)
            raise AckTimeoutError(kind, request_id, timeout)
        return ack.result()

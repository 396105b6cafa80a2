"""Asyncio client for the TTS module.

Typical usage::

    from tts_module.client import TTSClient

    async with TTSClient() as client:
        await client.clear_temp_files()
        await client.load_provider("fishaudio", api_key="...")
        audio = await client.generate("How are you feeling?", params)
        async for chunk in client.iter_stream("How are you feeling?", params):
            ...

Every call generates a fresh request id, registers its reply waiters before
sending, and races the acknowledgement against ``ack_timeout``.  When the
module does not acknowledge in time the request is abandoned and
:class:`~tts_module.errors.AckTimeoutError` is raised.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets

from tts_module.config import ACK_TIMEOUT, CONNECT_TIMEOUT, get_host, get_port
from tts_module.errors import AckTimeoutError, ConnectionLostError, RequestFailedError
from tts_module.protocol.correlation import PendingReplies, StreamCallback
from tts_module.protocol.types import (
    GenParams,
    MessageInType,
    MessageOutType,
    Reply,
    StreamFormat,
    SyncAudio,
)

logger = logging.getLogger(__name__)


class TTSClient:
    """Client side of the TTS module WebSocket protocol.

    Attributes:
        host: Module host.
        port: Module port.
        ack_timeout: Seconds to wait for an acknowledgement.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        *,
        ack_timeout: float = ACK_TIMEOUT,
    ) -> None:
        self.host = host or get_host()
        self.port = port or get_port()
        self.ack_timeout = ack_timeout

        self._websocket: Any = None
        self._receive_task: asyncio.Task | None = None
        self._pending = PendingReplies()

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/"

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket and start the receive loop.

        Raises:
            ConnectionLostError: if the module is unreachable within
                ``CONNECT_TIMEOUT`` seconds.
        """
        if self._websocket is not None:
            return
        logger.info("Connecting to %s", self.url)
        try:
            self._websocket = await websockets.connect(
                self.url, open_timeout=CONNECT_TIMEOUT, max_size=None
            )
        except (OSError, TimeoutError, websockets.InvalidHandshake) as exc:
            raise ConnectionLostError(
                f"Timeout during connection to TTS module at {self.url}: {exc}"
            ) from exc
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("Connected to TTS module")

    async def disconnect(self) -> None:
        """Close the socket and fail every pending request."""
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()
        if self._receive_task is not None:
            self._receive_task.cancel()
            await asyncio.gather(self._receive_task, return_exceptions=True)
            self._receive_task = None
        self._pending.fail_all(ConnectionLostError("Client disconnected"))

    async def __aenter__(self) -> "TTSClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    async def _receive_loop(self) -> None:
        websocket = self._websocket
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    self._pending.dispatch_frame(message)
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.error("Received non-JSON text message from module")
                    continue
                self._pending.dispatch(data)
        except websockets.ConnectionClosed as exc:
            logger.warning("Connection to TTS module closed: %s", exc)
        finally:
            if self._websocket is websocket:
                self._websocket = None
                await websocket.close()
            self._pending.fail_all(ConnectionLostError("Connection to TTS module closed"))

    async def _send(self, message: dict) -> None:
        await self.connect()
        try:
            await self._websocket.send(json.dumps(message))
        except websockets.ConnectionClosed as exc:
            raise ConnectionLostError("Connection to TTS module closed") from exc

    async def _request(
        self,
        message_type: MessageInType,
        ack_kind: MessageOutType,
        done_kind: MessageOutType | None = None,
        *,
        on_frame: StreamCallback | None = None,
        **fields: Any,
    ) -> Reply:
        """Send one request and return its terminal reply.

        For kinds answered by a single reply, *ack_kind* is that reply and
        *done_kind* is None.
        """
        request_id = str(uuid.uuid4())
        ack = self._pending.listen(ack_kind.value, request_id)
        done = self._pending.listen(done_kind.value, request_id) if done_kind else None
        if on_frame is not None:
            self._pending.listen_stream(request_id, on_frame)

        try:
            await self._send(
                {"type": message_type.value, "unique_request_id": request_id, **fields}
            )
            reply = await self._pending.wait_for_ack(
                message_type.value, request_id, ack, self.ack_timeout
            )
            if done is None:
                return reply
            return await done
        finally:
            self._pending.remove_all(request_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load_provider(self, provider: str, **load_params: Any) -> None:
        """Swap the module's active provider.

        Extra keyword arguments (``api_key``, ...) are forwarded to the
        provider's ``init``.

        Raises:
            RequestFailedError: if the module reports anything but SUCCESS.
        """
        done = await self._request(
            MessageInType.LOAD,
            MessageOutType.LOAD_ACK,
            MessageOutType.LOAD_DONE,
            provider=provider,
            **load_params,
        )
        if done.is_error:
            raise RequestFailedError("load", done.error)

    async def generate(self, text: str, params: GenParams | dict) -> SyncAudio:
        """Generate *text* into an audio file and return its location."""
        done = await self._request(
            MessageInType.GENERATE,
            MessageOutType.GENERATE_ACK,
            MessageOutType.GENERATE_DONE,
            input=text,
            params=_dump_params(params),
            stream=False,
        )
        if done.is_error or done.response is None:
            raise RequestFailedError("generate", done.error)
        return done.response

    async def generate_stream(
        self,
        text: str,
        params: GenParams | dict,
        callback: StreamCallback,
    ) -> None:
        """Generate *text* as PCM, calling *callback* with each chunk's bytes."""
        done = await self._request(
            MessageInType.GENERATE,
            MessageOutType.GENERATE_ACK,
            MessageOutType.GENERATE_STREAM_DONE,
            on_frame=callback,
            input=text,
            params=_dump_params(params),
            stream=True,
        )
        if done.is_error:
            raise RequestFailedError("generate_stream", done.error)

    async def iter_stream(
        self, text: str, params: GenParams | dict
    ) -> AsyncIterator[bytes]:
        """Like :meth:`generate_stream`, as an async iterator of chunks."""
        queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        task = asyncio.create_task(self.generate_stream(text, params, queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                yield chunk
            await task
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    async def interrupt(self) -> None:
        """Interrupt every generation running on the module."""
        await self._request(MessageInType.INTERRUPT, MessageOutType.INTERRUPT_ACK)

    async def close(self) -> None:
        """Ask the module process to exit.

        An unacknowledged close is not an error: the module is most likely
        already gone.
        """
        try:
            await self._request(MessageInType.CLOSE, MessageOutType.CLOSE_ACK)
        except (AckTimeoutError, ConnectionLostError) as exc:
            logger.info("Close not acknowledged, module may already be closed: %s", exc)

    async def get_providers(self) -> list[str]:
        reply = await self._request(
            MessageInType.GET_PROVIDERS, MessageOutType.GET_PROVIDERS_DONE
        )
        return reply.providers

    async def get_models(self) -> list[str]:
        reply = await self._request(
            MessageInType.GET_MODELS, MessageOutType.GET_MODELS_DONE
        )
        return reply.models

    async def get_stream_format(self) -> StreamFormat:
        reply = await self._request(
            MessageInType.GET_STREAM_FORMAT, MessageOutType.GET_STREAM_FORMAT_DONE
        )
        return reply.format

    async def clear_temp_files(self) -> None:
        """Delete the audio files generated by previous sessions."""
        await self._request(
            MessageInType.CLEAR_TEMP_FILES, MessageOutType.CLEAR_TEMP_FILES_ACK
        )


def _dump_params(params: GenParams | dict) -> dict:
    if isinstance(params, dict):
        params = GenParams.model_validate(params)
    return params.model_dump(mode="json")



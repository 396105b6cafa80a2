"""Tests for tts_module.client — caller side of the protocol.

``websockets.connect`` is patched to return an in-memory socket whose
replies are scripted per request type.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from tts_module.client import TTSClient
from tts_module.errors import AckTimeoutError, ConnectionLostError, RequestFailedError
from tts_module.protocol.framing import encode_frame
from tts_module.protocol.types import ErrorKind, StreamFormat

PARAMS = {"model_id": "", "voice_id": "v", "timeout_ms": None}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedSocket:
    """Stands in for a websockets connection.

    ``script`` maps a request type to a function returning the messages the
    server sends back (JSON-able dicts, raw bytes, or None to hang up).
    """

    def __init__(self, script: dict) -> None:
        self.script = script
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, text: str) -> None:
        message = json.loads(text)
        self.sent.append(message)
        respond = self.script.get(message["type"])
        if respond is None:
            return
        for reply in respond(message["unique_request_id"], message):
            if isinstance(reply, dict):
                reply = json.dumps(reply)
            self._incoming.put_nowait(reply)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)


def _reply(reply_type: str, request_id: str, **fields) -> dict:
    return {"type": reply_type, "unique_request_id": request_id, **fields}


def _outcome(error: ErrorKind) -> dict:
    return {"error": error.value, "is_error": error is not ErrorKind.SUCCESS}


@pytest.fixture
def connect_to():
    """Patch ``websockets.connect`` to hand out a ScriptedSocket."""

    def factory(script: dict) -> ScriptedSocket:
        socket = ScriptedSocket(script)
        patcher = patch("tts_module.client.websockets.connect", AsyncMock(return_value=socket))
        patcher.start()
        patches.append(patcher)
        return socket

    patches: list = []
    yield factory
    for patcher in patches:
        patcher.stop()


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequests:
    async def test_load_provider(self, connect_to):
        socket = connect_to(
            {
                "load": lambda rid, m: [
                    _reply("load_ack", rid, provider=m["provider"]),
                    _reply("load_done", rid, provider=m["provider"], **_outcome(ErrorKind.SUCCESS)),
                ]
            }
        )
        async with TTSClient() as client:
            await client.load_provider("fishaudio", api_key="k")

        sent = socket.sent[0]
        assert sent["type"] == "load"
        assert sent["provider"] == "fishaudio"
        assert sent["api_key"] == "k"
        assert sent["unique_request_id"]

    async def test_load_failure_raises(self, connect_to):
        connect_to(
            {
                "load": lambda rid, m: [
                    _reply("load_ack", rid, provider="fishaudio"),
                    _reply("load_done", rid, provider="fishaudio", **_outcome(ErrorKind.AUTHORIZATION)),
                ]
            }
        )
        async with TTSClient() as client:
            with pytest.raises(RequestFailedError) as exc_info:
                await client.load_provider("fishaudio", api_key="bad")
        assert exc_info.value.error is ErrorKind.AUTHORIZATION

    async def test_generate_returns_audio(self, connect_to):
        audio = {
            "path": "/tmp/a.wav",
            "audio_format": {"format": "wav", "bit_depth": 16, "frequency": 44100, "channels_nb": 1},
        }
        socket = connect_to(
            {
                "generate": lambda rid, m: [
                    _reply("generate_ack", rid),
                    _reply("generate_done", rid, response=audio, **_outcome(ErrorKind.SUCCESS)),
                ]
            }
        )
        async with TTSClient() as client:
            result = await client.generate("Hello", PARAMS)

        assert result.path == "/tmp/a.wav"
        assert socket.sent[0]["stream"] is False
        assert socket.sent[0]["params"]["convert"] is None

    async def test_generate_stream_collects_frames(self, connect_to):
        connect_to(
            {
                "generate": lambda rid, m: [
                    _reply("generate_ack", rid),
                    encode_frame(rid, b"one"),
                    encode_frame("someone-else", b"other"),
                    encode_frame(rid, b"two"),
                    _reply("generate_stream_done", rid, **_outcome(ErrorKind.SUCCESS)),
                ]
            }
        )
        async with TTSClient() as client:
            chunks = [chunk async for chunk in client.iter_stream("Hello", PARAMS)]

        assert chunks == [b"one", b"two"]

    async def test_interrupted_stream_raises(self, connect_to):
        connect_to(
            {
                "generate": lambda rid, m: [
                    _reply("generate_ack", rid),
                    _reply("generate_stream_done", rid, **_outcome(ErrorKind.INTERRUPT)),
                ]
            }
        )
        received = []
        async with TTSClient() as client:
            with pytest.raises(RequestFailedError) as exc_info:
                await client.generate_stream("Hello", PARAMS, received.append)
        assert exc_info.value.error is ErrorKind.INTERRUPT

    async def test_introspection(self, connect_to):
        connect_to(
            {
                "get_providers": lambda rid, m: [_reply("get_providers_done", rid, providers=["fishaudio"])],
                "get_models": lambda rid, m: [_reply("get_models_done", rid, models=["s1"])],
                "get_stream_format": lambda rid, m: [
                    _reply(
                        "get_stream_format_done",
                        rid,
                        format={"bit_depth": 16, "frequency": 44100, "channels_nb": 1},
                    )
                ],
                "clear_temp_files": lambda rid, m: [_reply("clear_temp_files_ack", rid)],
                "interrupt": lambda rid, m: [_reply("interrupt_ack", rid)],
            }
        )
        async with TTSClient() as client:
            assert await client.get_providers() == ["fishaudio"]
            assert await client.get_models() == ["s1"]
            assert await client.get_stream_format() == StreamFormat(
                bit_depth=16, frequency=44100, channels_nb=1
            )
            await client.clear_temp_files()
            await client.interrupt()
            assert client._pending.pending_count == 0


# ---------------------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_ack_timeout_purges_listeners(self, connect_to):
        connect_to({})
        async with TTSClient(ack_timeout=0.02) as client:
            with pytest.raises(AckTimeoutError):
                await client.generate_stream("Hello", PARAMS, lambda chunk: None)
            assert client._pending.pending_count == 0

    async def test_unacknowledged_close_is_not_an_error(self, connect_to):
        connect_to({})
        async with TTSClient(ack_timeout=0.02) as client:
            await client.close()

    async def test_connection_lost_while_waiting(self, connect_to):
        connect_to({"generate": lambda rid, m: [_reply("generate_ack", rid), None]})
        async with TTSClient() as client:
            with pytest.raises(ConnectionLostError):
                await client.generate("Hello", PARAMS)
            assert not client.connected

    async def test_bad_frames_keep_connection_alive(self, connect_to):
        connect_to(
            {
                "generate": lambda rid, m: [
                    _reply("generate_ack", rid),
                    b"$\xff\xfe<|end_of_id|>pcm",
                    encode_frame(rid, b"one"),
                    _reply("generate_stream_done", rid, **_outcome(ErrorKind.SUCCESS)),
                ],
                "get_providers": lambda rid, m: [_reply("get_providers_done", rid, providers=["fishaudio"])],
            }
        )
        received = []

        def callback(chunk: bytes) -> None:
            received.append(chunk)
            raise RuntimeError("callback failed")

        async with TTSClient() as client:
            await client.generate_stream("Hello", PARAMS, callback)
            assert client.connected
            assert await client.get_providers() == ["fishaudio"]

        assert received == [b"one"]

    async def test_unreachable_module(self):
        with patch(
            "tts_module.client.websockets.connect",
            AsyncMock(side_effect=OSError("refused")),
        ):
            client = TTSClient()
            with pytest.raises(ConnectionLostError):
                await client.get_providers()

    async def test_disconnect_closes_socket(self, connect_to):
        socket = connect_to({})
        client = TTSClient()
        await client.connect()
        await client.disconnect()
        assert socket.closed
        assert not client.connected

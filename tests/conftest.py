"""Shared fixtures for TTS module tests."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from tts_module.protocol.correlation import ReplySender
from tts_module.protocol.types import (
    AudioFormat,
    ErrorKind,
    GenParams,
    StreamChunk,
    StreamFormat,
    SyncAudio,
    SyncResult,
)
from tts_module.providers.base import TTSProvider
from tts_module.providers.registry import ProviderRegistry
from tts_module.server.app import create_app


class FakeProvider(TTSProvider):
    """Scriptable in-memory provider.

    Each chunk in ``chunks`` costs ``delay`` seconds; the interrupt token is
    checked before every chunk, the same way real backends do.
    """

    name = "fake"

    def __init__(
        self,
        *,
        init_error: ErrorKind = ErrorKind.SUCCESS,
        chunks: tuple[bytes, ...] = (b"\x01\x02", b"\x03\x04", b"\x05\x06"),
        delay: float = 0.0,
        result_error: ErrorKind = ErrorKind.SUCCESS,
    ) -> None:
        super().__init__()
        self.init_error = init_error
        self.chunks = chunks
        self.delay = delay
        self.result_error = result_error
        self.init_params: dict | None = None
        self.freed = False

    async def init(self, load_params: dict) -> ErrorKind:
        self.init_params = load_params
        return self.init_error

    async def free(self) -> None:
        self.freed = True

    async def generate(
        self, text: str, params: GenParams, interrupted: asyncio.Event
    ) -> SyncResult:
        for _ in self.chunks:
            await asyncio.sleep(self.delay)
            if interrupted.is_set():
                return SyncResult(error=ErrorKind.INTERRUPT)
        if self.result_error is not ErrorKind.SUCCESS:
            return SyncResult(error=self.result_error)
        return SyncResult(
            error=ErrorKind.SUCCESS,
            value=SyncAudio(
                path="/tmp/fake.wav",
                audio_format=AudioFormat(bit_depth=16, frequency=44100, channels_nb=1),
            ),
        )

    async def generate_stream(
        self, text, params, on_chunk, interrupted: asyncio.Event
    ) -> ErrorKind:
        try:
            for chunk in self.chunks:
                await asyncio.sleep(self.delay)
                if interrupted.is_set():
                    return ErrorKind.INTERRUPT
                await on_chunk(StreamChunk(done=False, data=chunk))
            return self.result_error
        finally:
            await on_chunk(StreamChunk(done=True))

    async def list_models(self) -> list[str]:
        return ["fake-1", "fake-2"]

    async def stream_format(self) -> StreamFormat:
        return StreamFormat(bit_depth=16, frequency=22050, channels_nb=1)


class SlowFakeProvider(FakeProvider):
    """FakeProvider with enough chunks and delay to be interrupted mid-way."""

    def __init__(self) -> None:
        super().__init__(chunks=tuple(bytes([i]) * 4 for i in range(40)), delay=0.05)


class Recorder:
    """Collects everything a ReplySender writes to the socket."""

    def __init__(self) -> None:
        self.messages: list[dict] = []
        self.frames: list[bytes] = []

    async def send_text(self, text: str) -> None:
        self.messages.append(json.loads(text))

    async def send_bytes(self, data: bytes) -> None:
        self.frames.append(data)

    @property
    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


def gen_message(request_id: str = "gen-1", *, stream: bool = False, **overrides) -> dict:
    """Build a valid generate request."""
    params = {"model_id": "", "voice_id": "voice", "timeout_ms": None, "convert": None}
    params.update(overrides.pop("params", {}))
    message = {
        "type": "generate",
        "unique_request_id": request_id,
        "input": "Hello there",
        "params": params,
        "stream": stream,
    }
    message.update(overrides)
    return message


@pytest.fixture(autouse=True)
def audio_dir(tmp_path, monkeypatch):
    """Point generated audio files at a per-test directory."""
    directory = tmp_path / "audio"
    monkeypatch.setattr("tts_module.storage.AUDIO_DIR", directory)
    return directory


@pytest.fixture
def registry() -> ProviderRegistry:
    """Registry offering the fake providers only."""
    return ProviderRegistry({"fake": FakeProvider, "slow": SlowFakeProvider})


@pytest.fixture
async def loaded_registry(registry: ProviderRegistry) -> ProviderRegistry:
    """Registry with the fake provider already loaded."""
    assert await registry.load("fake", {}) is ErrorKind.SUCCESS
    return registry


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def sender(recorder: Recorder) -> ReplySender:
    return ReplySender(recorder.send_text, recorder.send_bytes)


@pytest.fixture
def on_close() -> MagicMock:
    return MagicMock()


@pytest.fixture
def app(registry: ProviderRegistry, on_close: MagicMock):
    """FastAPI app wired to the fake registry, with process exit mocked out."""
    return create_app(registry=registry, on_close=on_close)


@pytest.fixture
def client(app):
    """Starlette TestClient with the app lifespan running."""
    with TestClient(app) as test_client:
        yield test_client

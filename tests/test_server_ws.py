"""End-to-end tests for the WebSocket endpoint and ``GET /health``.

Uses the Starlette TestClient; the app, registry and on_close fixtures are
defined in conftest.py.
"""

import json
from functools import partial

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import gen_message
from tts_module import __version__
from tts_module.protocol.framing import decode_frame
from tts_module.providers.fishaudio import FishAudioProvider
from tts_module.providers.registry import ProviderRegistry
from tts_module.server.app import create_app


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request(ws, message_type: str, request_id: str, **fields) -> None:
    ws.send_text(json.dumps({"type": message_type, "unique_request_id": request_id, **fields}))


def _receive_until(ws, reply_type: str) -> tuple[list[dict], list[bytes]]:
    """Collect replies and frames up to and including the first *reply_type*."""
    replies: list[dict] = []
    frames: list[bytes] = []
    while True:
        message = ws.receive()
        if message.get("bytes") is not None:
            frames.append(message["bytes"])
            continue
        data = json.loads(message["text"])
        replies.append(data)
        if data["type"] == reply_type:
            return replies, frames


def _load(ws, provider: str = "fake") -> dict:
    _request(ws, "load", "load-1", provider=provider, api_key="k")
    replies, _ = _receive_until(ws, "load_done")
    return replies[-1]


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health_without_provider(self, client: TestClient):
        body = client.get("/health").json()
        assert body == {
            "status": "ok",
            "version": __version__,
            "provider": None,
            "in_flight": 0,
            "connections": 0,
        }

    def test_health_reports_provider_and_connection(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            _load(ws)
            body = client.get("/health").json()
        assert body["provider"] == "fake"
        assert body["connections"] == 1


# ---------------------------------------------------------------------------
# Protocol scenarios
# ---------------------------------------------------------------------------


class TestProtocol:
    def test_load_then_sync_generate(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            load_done = _load(ws)
            assert load_done["is_error"] is False

            ws.send_text(json.dumps(gen_message("gen-1")))
            replies, frames = _receive_until(ws, "generate_done")

        assert [r["type"] for r in replies] == ["generate_ack", "generate_done"]
        assert replies[1]["response"]["path"] == "/tmp/fake.wav"
        assert frames == []

    def test_stream_frames_precede_done(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            _load(ws)
            ws.send_text(json.dumps(gen_message("gen-1", stream=True)))
            replies, frames = _receive_until(ws, "generate_stream_done")

        assert [r["type"] for r in replies] == ["generate_ack", "generate_stream_done"]
        assert [decode_frame(f) for f in frames] == [
            ("gen-1", b"\x01\x02"),
            ("gen-1", b"\x03\x04"),
            ("gen-1", b"\x05\x06"),
        ]

    def test_interrupt_mid_stream(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            _load(ws, "slow")
            ws.send_text(json.dumps(gen_message("gen-1", stream=True)))
            assert ws.receive_json()["type"] == "generate_ack"
            assert decode_frame(ws.receive_bytes())[0] == "gen-1"

            _request(ws, "interrupt", "int-1")
            replies, frames = _receive_until(ws, "generate_stream_done")

        assert "interrupt_ack" in [r["type"] for r in replies]
        assert replies[-1]["is_error"] is True
        assert replies[-1]["error"] == "INTERRUPT"
        assert len(frames) < 39

    def test_generate_without_provider_keeps_connection(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            ws.send_text(json.dumps(gen_message("gen-1")))
            _request(ws, "get_providers", "p-1")
            reply = ws.receive_json()

        assert reply == {
            "type": "get_providers_done",
            "unique_request_id": "p-1",
            "providers": ["fake", "slow"],
        }

    def test_invalid_messages_keep_connection(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            ws.send_text("not json")
            ws.send_bytes(b"\x00\x01")
            _request(ws, "bogus", "b-1")
            ws.send_text(json.dumps(gen_message("gen-1", input="")))
            _request(ws, "get_providers", "p-1")
            reply = ws.receive_json()

        assert reply["type"] == "get_providers_done"

    def test_unknown_provider_keeps_previous(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            _load(ws)
            done = _load(ws, "nope")
            assert done["error"] == "INVALID_PROVIDER"

            _request(ws, "get_models", "m-1")
            reply = ws.receive_json()

        assert reply["models"] == ["fake-1", "fake-2"]

    def test_close_acks_then_calls_on_close(self, client: TestClient, on_close):
        with client.websocket_connect("/") as ws:
            _request(ws, "close", "c-1")
            assert ws.receive_json() == {"type": "close_ack", "unique_request_id": "c-1"}
            _request(ws, "get_providers", "p-1")
            ws.receive_json()
        on_close.assert_called_once_with()


# ---------------------------------------------------------------------------
# Fish Audio through the socket
# ---------------------------------------------------------------------------


class TestFishAudioEndToEnd:
    @pytest.fixture
    def fish_client(self, on_close):
        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            if request.headers["Authorization"] != "Bearer good-key":
                return httpx.Response(401)
            if payload["format"] == "pcm":
                return httpx.Response(200, content=b"\x00\x01" * 100)
            return httpx.Response(200, content=b"RIFF" + b"\x00" * 40)

        transport = httpx.MockTransport(handler)
        registry = ProviderRegistry(
            {"fishaudio": partial(FishAudioProvider, transport=transport)}
        )
        with TestClient(create_app(registry=registry, on_close=on_close)) as test_client:
            yield test_client

    def test_valid_key_then_generate(self, fish_client: TestClient, audio_dir):
        with fish_client.websocket_connect("/") as ws:
            _request(ws, "load", "l-1", provider="fishaudio", api_key="good-key")
            replies, _ = _receive_until(ws, "load_done")
            assert [r["type"] for r in replies] == ["load_ack", "load_done"]
            assert replies[1]["is_error"] is False

            ws.send_text(json.dumps(gen_message("g-1")))
            replies, _ = _receive_until(ws, "generate_done")

        response = replies[-1]["response"]
        assert response["audio_format"] == {
            "format": "wav",
            "bit_depth": 16,
            "frequency": 44100,
            "channels_nb": 1,
        }
        assert response["path"].startswith(str(audio_dir.resolve()))

    def test_bad_key(self, fish_client: TestClient):
        with fish_client.websocket_connect("/") as ws:
            _request(ws, "load", "l-1", provider="fishaudio", api_key="bad-key")
            replies, _ = _receive_until(ws, "load_done")

        assert replies[-1]["error"] == "AUTHORIZATION"
        assert replies[-1]["is_error"] is True

"""Configuration constants and helpers for the TTS module."""

import os
from pathlib import Path

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 7563

TTS_MODULE_DIR: Path = Path(
    os.environ.get("TTS_MODULE_DIR", str(Path.home() / ".tts-module"))
)
PID_FILE: Path = TTS_MODULE_DIR / "server.pid"
LOG_FILE: Path = TTS_MODULE_DIR / "server.log"


def get_host() -> str:
    """Return the bind host from TTS_HOST env var, or DEFAULT_HOST."""
    return os.environ.get("TTS_HOST", DEFAULT_HOST)


def get_port() -> int:
    """Return the server port from TTS_PORT env var, or DEFAULT_PORT."""
    raw = os.environ.get("TTS_PORT")
    if raw is not None:
        try:
            return int(raw)
        except ValueError:
            return DEFAULT_PORT
    return DEFAULT_PORT


# --- Generated audio artifacts ---

AUDIO_DIR: Path = Path(os.environ.get("TTS_AUDIO_DIR", "audio"))


# --- Protocol ---

ACK_TIMEOUT: float = int(os.environ.get("TTS_ACK_TIMEOUT_MS", "1000")) / 1000.0
STREAM_CHUNK_SIZE: int = int(
    os.environ.get("TTS_STREAM_CHUNK_SIZE", "2048")
)  # Upper bound on the payload of one binary frame.
CONNECT_TIMEOUT: float = 5.0


# --- Fish Audio provider ---

FISHAUDIO_BASE_URL: str = os.environ.get(
    "FISHAUDIO_BASE_URL", "https://api.fish.audio"
)
FISHAUDIO_HTTP_TIMEOUT: float = float(
    os.environ.get("FISHAUDIO_HTTP_TIMEOUT", "30.0")
)
FISHAUDIO_TEST_VOICE_ID: str = os.environ.get(
    "FISHAUDIO_TEST_VOICE_ID", "e58b0d7efca34eb38d5c4985e378abcb"
)
FISHAUDIO_LATENCY: str = os.environ.get("FISHAUDIO_LATENCY", "balanced")
FISHAUDIO_SAMPLE_RATE: int = 44100

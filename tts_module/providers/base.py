"""Abstract base class for TTS providers.

Every backend implements this interface. The registry installs exactly one
provider at a time and the generation coordinator drives it without knowing
which backend is active. Providers report failures as ``ErrorKind`` values
and log them internally; they must never raise from ``generate()`` or
``generate_stream()``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from tts_module.protocol.types import (
    ErrorKind,
    GenParams,
    StreamChunk,
    StreamFormat,
    SyncResult,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[StreamChunk], Awaitable[None]]

REQUIRED_CAPABILITIES: tuple[str, ...] = (
    "init",
    "free",
    "generate",
    "generate_stream",
    "interrupt",
    "list_models",
    "stream_format",
    "begin_generation",
    "end_generation",
)


class TTSProvider(ABC):
    """Abstract base class for TTS providers.

    Besides the abstract capabilities, the base class keeps the bookkeeping
    shared by all providers: a count of generations in flight and the
    interrupt tokens handed to them. ``interrupt()`` sets every live token;
    provider loops check their token at each chunk boundary and resolve with
    ``ErrorKind.INTERRUPT`` once it is set.
    """

    name: str = ""

    def __init__(self) -> None:
        self._in_flight: int = 0
        self._tokens: set[asyncio.Event] = set()

    @abstractmethod
    async def init(self, load_params: dict) -> ErrorKind:
        """Set up the backend. Return only once requests can be served.

        Returns ``AUTHORIZATION`` when credentials are rejected and
        ``UNEXPECTED`` for any other setup failure.
        """

    @abstractmethod
    async def free(self) -> None:
        """Release everything acquired by ``init``."""

    @abstractmethod
    async def generate(
        self, text: str, params: GenParams, interrupted: asyncio.Event
    ) -> SyncResult:
        """Produce a complete audio file. Never raises."""

    @abstractmethod
    async def generate_stream(
        self,
        text: str,
        params: GenParams,
        on_chunk: ChunkCallback,
        interrupted: asyncio.Event,
    ) -> ErrorKind:
        """Produce audio incrementally through *on_chunk*.

        *on_chunk* receives one ``StreamChunk(done=False)`` per piece of
        audio, then exactly one ``StreamChunk(done=True)`` whatever the
        outcome. Never raises.
        """

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Model ids accepted as ``params.model_id``."""

    @abstractmethod
    async def stream_format(self) -> StreamFormat:
        """PCM layout of streamed chunks."""

    def interrupt(self) -> None:
        """Ask every in-flight generation to stop as soon as possible."""
        for token in self._tokens:
            token.set()
        logger.info(
            "Interrupt requested on provider %s (%d in flight)",
            self.name,
            self._in_flight,
        )

    @property
    def in_flight(self) -> int:
        """Number of generations currently running on this provider."""
        return self._in_flight

    def begin_generation(self) -> asyncio.Event:
        """Count a new generation and return its interrupt token."""
        token = asyncio.Event()
        self._tokens.add(token)
        self._in_flight += 1
        return token

    def end_generation(self, token: asyncio.Event) -> None:
        """Release a generation started with ``begin_generation``."""
        self._tokens.discard(token)
        self._in_flight -= 1
        if self._in_flight < 0:
            logger.warning("In-flight counter of %s went negative, clamping", self.name)
            self._in_flight = 0


def verify_adherence(candidate: object, name: str) -> bool:
    """Return True if *candidate* exposes every provider capability.

    Each missing or non-callable capability is logged.
    """
    missing = [
        capability
        for capability in REQUIRED_CAPABILITIES
        if not callable(getattr(candidate, capability, None))
    ]
    if missing:
        logger.error(
            "Implementation of provider %s failed the interface check, missing: %s",
            name,
            ", ".join(missing),
        )
        return False
    return True

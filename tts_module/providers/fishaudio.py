"""Fish Audio TTS provider.

Talks to the Fish Audio HTTP API with an ``httpx.AsyncClient``. The API key
arrives in the load request and is validated with a short test synthesis
before the provider reports itself ready. Synchronous generation streams
the WAV response straight to a temp file, at the rate asked for by
``params.convert``. Streaming generation always requests raw PCM at
:meth:`FishAudioProvider.stream_format` and hands it on in small chunks so
interrupts are noticed quickly.
"""

import asyncio
import logging

import httpx

from tts_module.config import (
    FISHAUDIO_BASE_URL,
    FISHAUDIO_HTTP_TIMEOUT,
    FISHAUDIO_LATENCY,
    FISHAUDIO_SAMPLE_RATE,
    FISHAUDIO_TEST_VOICE_ID,
)
from tts_module.protocol.framing import split_chunks
from tts_module.protocol.types import (
    AudioFormat,
    ErrorKind,
    GenParams,
    StreamChunk,
    StreamFormat,
    SyncAudio,
    SyncResult,
)
from tts_module.providers.base import ChunkCallback, TTSProvider
from tts_module.storage import new_audio_path

logger = logging.getLogger(__name__)

MODELS: list[str] = ["speech-1.5", "speech-1.6", "s1"]

_AUTH_STATUSES = frozenset({401, 402, 403})


class FishAudioProvider(TTSProvider):
    """Fish Audio backend behind the TTSProvider contract."""

    name = "fishaudio"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def init(self, load_params: dict) -> ErrorKind:
        """Create the HTTP client and check the API key with a test request."""
        api_key = load_params.get("api_key")
        if not api_key:
            logger.error(
                "Request to load fishaudio provider is missing the field \"api_key\". "
                "Example: %s",
                {"type": "load", "provider": "fishaudio", "api_key": "<api key>"},
            )
            return ErrorKind.AUTHORIZATION

        self._client = httpx.AsyncClient(
            base_url=FISHAUDIO_BASE_URL,
            timeout=FISHAUDIO_HTTP_TIMEOUT,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=self._transport,
        )

        try:
            resp = await self._client.post(
                "/v1/tts",
                json={
                    "text": "This is a test",
                    "format": "wav",
                    "reference_id": FISHAUDIO_TEST_VOICE_ID,
                    "normalize": False,
                    "latency": FISHAUDIO_LATENCY,
                },
            )
        except (httpx.HTTPError, OSError) as exc:
            logger.error("Test request to fishaudio failed: %s", exc)
            await self.free()
            return ErrorKind.UNEXPECTED

        if resp.status_code in _AUTH_STATUSES:
            logger.error(
                "Fishaudio rejected the API key (status %d): %s",
                resp.status_code,
                resp.text[:500],
            )
            await self.free()
            return ErrorKind.AUTHORIZATION
        if resp.status_code >= 400:
            logger.error(
                "Test request to fishaudio returned status %d: %s",
                resp.status_code,
                resp.text[:500],
            )
            await self.free()
            return ErrorKind.UNEXPECTED

        logger.info("Fishaudio TTS available at %s", FISHAUDIO_BASE_URL)
        return ErrorKind.SUCCESS

    async def free(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def list_models(self) -> list[str]:
        return list(MODELS)

    async def stream_format(self) -> StreamFormat:
        # Streams ignore params.convert, so this is the rate of every stream.
        return StreamFormat(bit_depth=16, frequency=FISHAUDIO_SAMPLE_RATE, channels_nb=1)

    async def generate(
        self, text: str, params: GenParams, interrupted: asyncio.Event
    ) -> SyncResult:
        """Write a WAV file for *text* and return its path."""
        if self._client is None:
            logger.error("Fishaudio generate called before init")
            return SyncResult(error=ErrorKind.UNEXPECTED)
        if not self._model_is_valid(params):
            return SyncResult(error=ErrorKind.INVALID_MODEL)

        sample_rate = self._sample_rate(params)
        path = new_audio_path()
        completed = False
        try:
            async with self._client.stream(
                "POST",
                "/v1/tts",
                json=self._payload(text, "wav", params.voice_id, sample_rate),
                headers=self._headers(params),
            ) as response:
                if response.status_code >= 400:
                    return SyncResult(error=await self._status_error(response))

                with path.open("wb") as f:
                    async for data in response.aiter_bytes():
                        if interrupted.is_set():
                            break
                        await asyncio.to_thread(f.write, data)

            if interrupted.is_set():
                logger.info("Fishaudio generation interrupted")
                return SyncResult(error=ErrorKind.INTERRUPT)

            completed = True
            return SyncResult(
                error=ErrorKind.SUCCESS,
                value=SyncAudio(
                    path=str(path),
                    audio_format=AudioFormat(
                        bit_depth=16, frequency=sample_rate, channels_nb=1
                    ),
                ),
            )
        except (httpx.HTTPError, OSError):
            logger.warning("Fishaudio generation failed", exc_info=True)
            return SyncResult(error=ErrorKind.UNEXPECTED)
        finally:
            if not completed:
                path.unlink(missing_ok=True)

    async def generate_stream(
        self,
        text: str,
        params: GenParams,
        on_chunk: ChunkCallback,
        interrupted: asyncio.Event,
    ) -> ErrorKind:
        """Stream raw PCM for *text* through *on_chunk*."""
        try:
            return await self._stream_pcm(text, params, on_chunk, interrupted)
        finally:
            await on_chunk(StreamChunk(done=True))

    async def _stream_pcm(
        self,
        text: str,
        params: GenParams,
        on_chunk: ChunkCallback,
        interrupted: asyncio.Event,
    ) -> ErrorKind:
        if self._client is None:
            logger.error("Fishaudio generate_stream called before init")
            return ErrorKind.UNEXPECTED
        if not self._model_is_valid(params):
            return ErrorKind.INVALID_MODEL

        try:
            async with self._client.stream(
                "POST",
                "/v1/tts",
                json=self._payload(text, "pcm", params.voice_id, FISHAUDIO_SAMPLE_RATE),
                headers=self._headers(params),
            ) as response:
                if response.status_code >= 400:
                    return await self._status_error(response)

                async for data in response.aiter_bytes():
                    for piece in split_chunks(data):
                        if interrupted.is_set():
                            logger.info("Fishaudio stream interrupted")
                            return ErrorKind.INTERRUPT
                        await on_chunk(StreamChunk(done=False, data=piece))
        except httpx.HTTPError:
            logger.warning("Fishaudio stream failed", exc_info=True)
            return ErrorKind.UNEXPECTED

        if interrupted.is_set():
            return ErrorKind.INTERRUPT
        return ErrorKind.SUCCESS

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _payload(text: str, audio_format: str, voice_id: str, sample_rate: int) -> dict:
        return {
            "text": text,
            "format": audio_format,
            "reference_id": voice_id,
            "sample_rate": sample_rate,
            "normalize": False,
            "latency": FISHAUDIO_LATENCY,
        }

    @staticmethod
    def _headers(params: GenParams) -> dict[str, str]:
        return {"model": params.model_id} if params.model_id else {}

    @staticmethod
    def _sample_rate(params: GenParams) -> int:
        if params.convert is not None:
            return params.convert.frequency
        return FISHAUDIO_SAMPLE_RATE

    @staticmethod
    def _model_is_valid(params: GenParams) -> bool:
        if params.model_id and params.model_id not in MODELS:
            logger.error(
                "Invalid model_id %r for fishaudio. Valid models: %s",
                params.model_id,
                ", ".join(MODELS),
            )
            return False
        return True

    @staticmethod
    async def _status_error(response: httpx.Response) -> ErrorKind:
        await response.aread()
        logger.error(
            "Fishaudio returned status %d: %s",
            response.status_code,
            response.text[:500],
        )
        if response.status_code in _AUTH_STATUSES:
            return ErrorKind.AUTHORIZATION
        return ErrorKind.UNEXPECTED

"""Generation coordinator — drives one generate request against the active provider.

For each request it:
1. Drops the request (logged, no reply) when no provider is loaded, fields
   are missing or the input text is empty
2. Acknowledges with ``generate_ack``
3. Runs the provider call inside a :class:`GenerationSession`, forwarding
   streamed chunks as binary frames
4. Emits exactly one terminal reply (``generate_done`` or
   ``generate_stream_done``) carrying the normalised error kind
"""

import logging

from pydantic import ValidationError

from tts_module.generation.session import GenerationSession
from tts_module.protocol.correlation import ReplySender
from tts_module.protocol.types import (
    EXAMPLE_GENERATE_MESSAGE,
    ErrorKind,
    GenerateAck,
    GenerateDone,
    GenerateMessage,
    GenerateStreamDone,
    StreamChunk,
)
from tts_module.providers.base import TTSProvider
from tts_module.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


def _describe_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = "][".join(f'"{part}"' for part in error["loc"])
        parts.append(f"[{location}]: {error['msg']}")
    return "; ".join(parts)


class GenerationCoordinator:
    """Runs generate requests for one connection."""

    def __init__(self, registry: ProviderRegistry, sender: ReplySender) -> None:
        self._registry = registry
        self._sender = sender
        self._sessions: dict[str, GenerationSession] = {}

    @property
    def sessions(self) -> dict[str, GenerationSession]:
        """Sessions that have not emitted their terminal reply yet."""
        return dict(self._sessions)

    async def generate(self, raw: dict) -> ErrorKind | None:
        """Handle one ``generate`` message.

        Returns the terminal error kind, or None if the request was dropped
        before being acknowledged.
        """
        provider = self._registry.active
        if provider is None:
            logger.error("Failed to generate, no provider is currently loaded.")
            return None

        try:
            message = GenerateMessage.model_validate(raw)
        except ValidationError as exc:
            logger.error(
                "Incoming generate message is invalid: %s. Example: %s",
                _describe_errors(exc),
                EXAMPLE_GENERATE_MESSAGE,
            )
            return None

        if len(message.input) == 0:
            logger.error(
                "Field \"input\" in incoming generate message must be of length >0. "
                "Example: %s",
                EXAMPLE_GENERATE_MESSAGE,
            )
            return None

        session = GenerationSession(
            message.request_id,
            provider,
            message.params.timeout_ms,
            stream=message.stream,
        )
        session.reserve()
        self._sessions[session.request_id] = session
        try:
            await self._sender.send(GenerateAck(request_id=session.request_id))
            session.acknowledge()
            if message.stream:
                return await self._run_stream(session, provider, message)
            return await self._run_sync(session, provider, message)
        finally:
            self._sessions.pop(session.request_id, None)
            # Releases the slot when the ack itself failed or was cancelled.
            session.finish(ErrorKind.UNEXPECTED)

    def interrupt(self) -> bool:
        """Interrupt every generation on the active provider.

        Returns False (logged) when no provider is loaded.
        """
        provider = self._registry.active
        if provider is None:
            logger.warning("Cannot interrupt, no provider is currently loaded.")
            return False
        provider.interrupt()
        return True

    async def _run_sync(
        self,
        session: GenerationSession,
        provider: TTSProvider,
        message: GenerateMessage,
    ) -> ErrorKind:
        result = await session.run(
            lambda token: provider.generate(message.input, message.params, token)
        )
        if result is not None:
            error = result.error
            if error is ErrorKind.SUCCESS and result.value is None:
                logger.error("Provider %s reported success without a file", provider.name)
                error = ErrorKind.UNEXPECTED
            session.complete(error)

        outcome = session.outcome or ErrorKind.UNEXPECTED
        if outcome is not ErrorKind.SUCCESS:
            logger.error("Error during generation %s: %s", session.request_id, outcome.value)

        await self._sender.send(
            GenerateDone(
                request_id=session.request_id,
                error=outcome,
                response=result.value if result is not None and outcome is ErrorKind.SUCCESS else None,
            )
        )
        return outcome

    async def _run_stream(
        self,
        session: GenerationSession,
        provider: TTSProvider,
        message: GenerateMessage,
    ) -> ErrorKind:
        frames = 0

        async def on_chunk(chunk: StreamChunk) -> None:
            nonlocal frames
            # The provider's done chunk is replaced by the JSON terminal reply.
            if chunk.done or session.finished:
                return
            if await self._sender.send_frame(session.request_id, chunk.data):
                frames += 1
            session.refresh_timeout()

        error = await session.run(
            lambda token: provider.generate_stream(
                message.input, message.params, on_chunk, token
            )
        )
        if error is not None:
            session.complete(error)

        outcome = session.outcome or ErrorKind.UNEXPECTED
        if outcome is not ErrorKind.SUCCESS:
            logger.error(
                "Error during streamed generation %s: %s", session.request_id, outcome.value
            )
        logger.info("Stream %s finished after %d frame(s)", session.request_id, frames)

        await self._sender.send(
            GenerateStreamDone(request_id=session.request_id, error=outcome)
        )
        return outcome

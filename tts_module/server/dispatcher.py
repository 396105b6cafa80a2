"""Message router: validates inbound envelopes and dispatches them by type.

Invalid messages are logged with the expected shape and dropped without a
reply; they never close the connection. Every accepted request is marked
outstanding on the connection's :class:`ReplySender` for as long as it is
being handled, which also rejects a request id that is reused while its
first request is still running.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from tts_module.generation.coordinator import GenerationCoordinator
from tts_module.protocol.correlation import ReplySender
from tts_module.protocol.types import (
    EXAMPLE_LOAD_MESSAGE,
    SENTINEL,
    ClearTempFilesAck,
    CloseAck,
    Envelope,
    GetModelsDone,
    GetProvidersDone,
    GetStreamFormatDone,
    InterruptAck,
    LoadAck,
    LoadDone,
    LoadMessage,
    MessageInType,
)
from tts_module.providers.registry import ProviderRegistry
from tts_module.storage import clear_audio_files

logger = logging.getLogger(__name__)

_HIDDEN_FIELDS = ("api_key",)

CloseCallback = Callable[[], Any]


def _redacted(message: dict) -> dict:
    """Copy of *message* safe to log."""
    return {
        key: "hidden" if key in _HIDDEN_FIELDS and value is not None else value
        for key, value in message.items()
    }


def _valid_types() -> str:
    return ", ".join(kind.value for kind in MessageInType)


class MessageRouter:
    """Top-level dispatcher for one connection."""

    def __init__(
        self,
        registry: ProviderRegistry,
        sender: ReplySender,
        *,
        on_close: CloseCallback | None = None,
    ) -> None:
        self._registry = registry
        self._sender = sender
        self._coordinator = GenerationCoordinator(registry, sender)
        self._on_close = on_close
        self._handlers: dict[str, Callable[[Envelope, dict], Awaitable[None]]] = {
            MessageInType.LOAD.value: self._handle_load,
            MessageInType.GENERATE.value: self._handle_generate,
            MessageInType.INTERRUPT.value: self._handle_interrupt,
            MessageInType.CLOSE.value: self._handle_close,
            MessageInType.GET_PROVIDERS.value: self._handle_get_providers,
            MessageInType.GET_MODELS.value: self._handle_get_models,
            MessageInType.GET_STREAM_FORMAT.value: self._handle_get_stream_format,
            MessageInType.CLEAR_TEMP_FILES.value: self._handle_clear_temp_files,
        }

    @property
    def coordinator(self) -> GenerationCoordinator:
        return self._coordinator

    async def handle(self, text: str) -> None:
        """Decode, validate and dispatch one inbound text message."""
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.error(
                "Failed to parse incoming message as JSON. Valid types are: %s",
                _valid_types(),
            )
            return

        if not isinstance(message, dict):
            logger.error(
                "Parsed message is not a JSON object (got %s).",
                type(message).__name__,
            )
            return

        logger.info("Received: %s", _redacted(message))

        if message.get("type") is None:
            logger.error(
                "Incoming message does not have the required field \"type\". "
                "Valid types are: %s",
                _valid_types(),
            )
            return

        if message.get("unique_request_id", message.get("request_id")) is None:
            logger.error(
                "Incoming message does not have the required field "
                "\"unique_request_id\". The client must generate a unique string "
                "to tell responses apart."
            )
            return

        try:
            envelope = Envelope.model_validate(message)
        except ValidationError as exc:
            logger.error(
                "Incoming message has an invalid envelope: %s. Request ids must be "
                "non-empty strings without %r.",
                exc.errors()[0]["msg"],
                SENTINEL,
            )
            return

        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.error(
                "Incoming message has invalid field \"type\": %r. Valid types are: %s",
                envelope.type,
                _valid_types(),
            )
            return

        if not self._sender.open(envelope.request_id):
            logger.error(
                "Request id %s is already in use by an outstanding request, ignoring %s.",
                envelope.request_id,
                envelope.type,
            )
            return

        try:
            await handler(envelope, message)
        finally:
            # Requests dropped without a terminal reply are purged here.
            self._sender.discard(envelope.request_id)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_load(self, envelope: Envelope, message: dict) -> None:
        try:
            load = LoadMessage.model_validate(message)
        except ValidationError:
            logger.error(
                "Incoming load message does not have the required field \"provider\". "
                "Example: %s",
                EXAMPLE_LOAD_MESSAGE,
            )
            return

        await self._sender.send(LoadAck(request_id=load.request_id, provider=load.provider))
        error = await self._registry.load(load.provider, load.load_params)
        await self._sender.send(
            LoadDone(request_id=load.request_id, provider=load.provider, error=error)
        )

    async def _handle_generate(self, envelope: Envelope, message: dict) -> None:
        await self._coordinator.generate(message)

    async def _handle_interrupt(self, envelope: Envelope, message: dict) -> None:
        await self._sender.send(InterruptAck(request_id=envelope.request_id))
        self._coordinator.interrupt()

    async def _handle_close(self, envelope: Envelope, message: dict) -> None:
        logger.warning("Received close message, shutting down.")
        await self._sender.send(CloseAck(request_id=envelope.request_id))
        if self._on_close is not None:
            self._on_close()

    async def _handle_get_providers(self, envelope: Envelope, message: dict) -> None:
        await self._sender.send(
            GetProvidersDone(
                request_id=envelope.request_id,
                providers=self._registry.available_providers,
            )
        )

    async def _handle_get_models(self, envelope: Envelope, message: dict) -> None:
        provider = self._registry.active
        if provider is None:
            logger.error("Cannot get models, no provider is currently loaded.")
            return
        models = await provider.list_models()
        await self._sender.send(GetModelsDone(request_id=envelope.request_id, models=models))

    async def _handle_get_stream_format(self, envelope: Envelope, message: dict) -> None:
        provider = self._registry.active
        if provider is None:
            logger.error("Cannot get stream format, no provider is currently loaded.")
            return
        stream_format = await provider.stream_format()
        await self._sender.send(
            GetStreamFormatDone(request_id=envelope.request_id, format=stream_format)
        )

    async def _handle_clear_temp_files(self, envelope: Envelope, message: dict) -> None:
        await asyncio.to_thread(clear_audio_files)
        await self._sender.send(ClearTempFilesAck(request_id=envelope.request_id))


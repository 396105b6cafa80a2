"""Provider registry: resolves names to implementations and owns the active slot.

The set of installable providers is closed. Each name maps to a provider
class, or to a ``"module:Class"`` path imported on first use so that a
backend's dependencies are only imported when it is actually loaded.
"""

import asyncio
import importlib
import logging

from tts_module.protocol.types import ErrorKind
from tts_module.providers.base import TTSProvider, verify_adherence

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, str | type] = {
    "fishaudio": "tts_module.providers.fishaudio:FishAudioProvider",
}


class ProviderRegistry:
    """Owner of the single active-provider slot.

    A provider only counts as active once its ``init`` succeeded, so nothing
    is routed to an instance that is being freed or initialised.
    """

    def __init__(self, providers: dict[str, str | type] | None = None) -> None:
        self._providers = dict(PROVIDERS if providers is None else providers)
        self._instance: TTSProvider | None = None
        self._active_name: str | None = None
        self._ready: bool = False
        self._lock = asyncio.Lock()

    @property
    def available_providers(self) -> list[str]:
        """Names of every installable provider."""
        return list(self._providers)

    @property
    def active(self) -> TTSProvider | None:
        """The provider serving requests, or None if nothing is loaded."""
        return self._instance if self._ready else None

    @property
    def active_name(self) -> str | None:
        return self._active_name if self._ready else None

    def resolve(self, name: str) -> TTSProvider | None:
        """Instantiate the provider registered as *name*, or return None."""
        target = self._providers.get(name)
        if target is None:
            logger.error(
                "Unknown provider %r. Available providers: %s",
                name,
                ", ".join(self._providers),
            )
            return None

        try:
            if isinstance(target, str):
                module_name, _, attr = target.partition(":")
                target = getattr(importlib.import_module(module_name), attr)
            return target()
        except Exception:
            logger.exception("Failed to locate implementation of provider %s", name)
            return None

    async def load(self, name: str, load_params: dict) -> ErrorKind:
        """Swap the active provider for a fresh instance of *name*.

        Nothing is freed unless the new provider resolved and passed the
        interface check. Once the old provider is freed, a failed ``init``
        leaves no provider active.
        """
        async with self._lock:
            candidate = self.resolve(name)
            if candidate is None:
                return ErrorKind.INVALID_PROVIDER

            if not verify_adherence(candidate, name):
                logger.error("Loaded provider %s does not adhere to the TTSProvider interface", name)
                return ErrorKind.UNEXPECTED

            current = self._instance
            if current is not None and current.in_flight > 0:
                logger.error(
                    "Cannot load %s while %d generation(s) are in flight on %s",
                    name,
                    current.in_flight,
                    self._active_name,
                )
                return ErrorKind.UNEXPECTED

            self._ready = False
            self._active_name = None
            if current is not None:
                await self._free(current)

            self._instance = candidate
            try:
                error = await candidate.init(load_params)
            except Exception:
                logger.exception("Provider %s raised during init", name)
                error = ErrorKind.UNEXPECTED

            if error is ErrorKind.SUCCESS:
                self._ready = True
                self._active_name = name
                logger.info("Successfully loaded provider: %s", name)
            else:
                self._instance = None
                logger.error("Failed to load provider %s: %s", name, error.value)
            return error

    async def shutdown(self) -> None:
        """Free the active provider, if any."""
        async with self._lock:
            current = self._instance
            self._instance = None
            self._active_name = None
            self._ready = False
            if current is not None:
                await self._free(current)

    @staticmethod
    async def _free(provider: TTSProvider) -> None:
        try:
            await provider.free()
        except Exception:
            logger.exception("Provider %s raised during free", provider.name)

"""FastAPI application factory for the TTS module.

Creates the FastAPI app whose lifespan owns the provider registry. The
``create_app()`` function is the single entry point used by the CLI and
``uvicorn`` alike.
"""

import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from tts_module import __version__
from tts_module.providers.registry import ProviderRegistry
from tts_module.server.dispatcher import CloseCallback
from tts_module.server.routes import router

logger = logging.getLogger(__name__)


def request_shutdown() -> None:
    """Ask uvicorn to shut down gracefully, as on Ctrl-C."""
    logger.info("Terminating process %d", os.getpid())
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Free the active provider when the server shuts down."""
    logger.info("TTS module starting up")
    try:
        yield
    finally:
        logger.info("TTS module shutting down")
        await app.state.registry.shutdown()
        logger.info("Provider registry shut down")


def create_app(
    registry: ProviderRegistry | None = None,
    on_close: CloseCallback | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    The returned app has:
    * ``app.state.registry`` — the :class:`ProviderRegistry` owning the active provider
    * ``app.state.on_close`` — called after a ``close`` request was acknowledged
    * ``app.state.connections`` — ids of open WebSocket connections
    * The WebSocket endpoint at ``/`` and ``GET /health``
    """
    app = FastAPI(
        title="TTS Module",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.registry = registry if registry is not None else ProviderRegistry()
    app.state.on_close = on_close if on_close is not None else request_shutdown
    app.state.connections = set()

    app.include_router(router)

    logger.info("FastAPI app created")
    return app

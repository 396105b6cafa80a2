"""State machine for one generate / generate-stream call.

    PENDING --ack sent--> ACKED --provider call begins--> IN_FLIGHT
    IN_FLIGHT --completed / timed out / interrupted / failed--> DONE(kind)

``DONE`` is entered exactly once. The provider call and the timeout timer
race; whichever resolves the session first wins and the other becomes a
no-op. Entering ``DONE`` releases the provider's in-flight slot and cancels
the loser: the timer when the call finished, the call when the timer fired.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from tts_module.protocol.types import ErrorKind
from tts_module.providers.base import TTSProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    """Lifecycle of a generation session."""

    PENDING = "pending"
    ACKED = "acked"
    IN_FLIGHT = "in_flight"
    DONE = "done"


class GenerationSession:
    """Bookkeeping for one generation, from ack to terminal reply."""

    def __init__(
        self,
        request_id: str,
        provider: TTSProvider,
        timeout_ms: int | None,
        *,
        stream: bool = False,
    ) -> None:
        self.request_id = request_id
        self.provider = provider
        self.stream = stream
        self.state: SessionState = SessionState.PENDING
        self.outcome: ErrorKind | None = None
        self.timed_out: bool = False
        self._timeout: float | None = timeout_ms / 1000.0 if timeout_ms else None
        self._token: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def finished(self) -> bool:
        return self.state is SessionState.DONE

    @property
    def interrupted(self) -> bool:
        """Whether an interrupt reached this session's token."""
        return self._token is not None and self._token.is_set()

    def reserve(self) -> None:
        """Take the provider's in-flight slot.

        Must happen before the first await after the provider was read from
        the registry, otherwise a concurrent load may free it in between.
        """
        if self._token is None:
            self._token = self.provider.begin_generation()

    def acknowledge(self) -> None:
        if self.state is SessionState.PENDING:
            self.state = SessionState.ACKED

    async def run(
        self, call: Callable[[asyncio.Event], Awaitable[T]]
    ) -> T | None:
        """Run the provider call, racing it against the timeout.

        Returns the call's result, or None when the session was already
        resolved by the timer or the call raised. Cancellation from outside
        (e.g. the connection closed) resolves the session as UNEXPECTED and
        propagates.
        """
        self.reserve()
        self.state = SessionState.IN_FLIGHT
        self._task = asyncio.ensure_future(call(self._token))
        self._arm_timer()

        try:
            return await self._task
        except asyncio.CancelledError:
            if self.timed_out:
                return None
            self.finish(ErrorKind.UNEXPECTED)
            raise
        except Exception:
            logger.exception("Unexpected error during generation %s", self.request_id)
            self.finish(ErrorKind.UNEXPECTED)
            return None

    def refresh_timeout(self) -> None:
        """Push the deadline back, used between streamed chunks."""
        if self.state is SessionState.IN_FLIGHT:
            self._arm_timer()

    def complete(self, kind: ErrorKind) -> bool:
        """Resolve from the call's own result.

        A SUCCESS observed after an interrupt is reported as INTERRUPT.
        """
        if kind is ErrorKind.SUCCESS and self.interrupted:
            kind = ErrorKind.INTERRUPT
        return self.finish(kind)

    def finish(self, kind: ErrorKind) -> bool:
        """Enter DONE with *kind*. Returns False if the session was already done."""
        if self.finished:
            return False
        self.state = SessionState.DONE
        self.outcome = kind

        if self._token is not None:
            self.provider.end_generation(self._token)
        if self._timer is not None and not self.timed_out:
            self._timer.cancel()
        self._timer = None
        return True

    def _arm_timer(self) -> None:
        if self._timeout is None:
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._timeout, self._on_timeout)

    def _on_timeout(self) -> None:
        if self.finished:
            return
        self.timed_out = True
        self.finish(ErrorKind.TIMEOUT)
        logger.error(
            "Generation %s timed out after %.0f ms",
            self.request_id,
            (self._timeout or 0) * 1000,
        )
        if self._task is not None and not self._task.done():
            self._task.cancel()

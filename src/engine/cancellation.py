"""Cooperative cancellation token shared by the manager, orchestrator, and adapters."""

import asyncio
import logging

from src.core.errors import CancellationError

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot stop signal checked at well-defined checkpoints.

    Usage::

        token = CancellationToken()
        ...
        token.raise_if_cancelled("after connect")  # at a phase boundary
        ...
        token.cancel("user request")               # from another task
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancel requested") -> bool:
        """Signal cancellation. Returns False if it was already signalled."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        logger.debug("Cancellation signalled: %s", reason)
        return True

    def raise_if_cancelled(self, checkpoint: str = "") -> None:
        """Raise CancellationError if the token has been signalled."""
        if self._event.is_set():
            raise CancellationError(checkpoint)

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until cancelled or timeout elapses. Returns True if cancelled."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        return True

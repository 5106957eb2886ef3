"""Status reporting and cooperative cancellation for agent runs."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable

from ..errors import AgentCancelledError

__all__ = [
    "AgentStatus",
    "StatusSink",
    "Checkpoint",
    "CancellationToken",
    "notify_status",
]

LOGGER = logging.getLogger(__name__)


class AgentStatus(str, enum.Enum):
    """Coarse phase tags reported to the caller while a run is active."""

    THINKING = "thinking"
    ANALYZING_TOOL_DATA = "analyzing-tool-data"
    EXECUTING_TOOL = "executing-tool"


StatusSink = Callable[[AgentStatus], None]


class Checkpoint(str, enum.Enum):
    """Points at which a run honours a pending cancellation request."""

    BEFORE_ITERATION = "before-iteration"
    AFTER_MODEL_CALL = "after-model-call"
    BEFORE_TOOL_CALL = "before-tool-call"


class CancellationToken:
    """One-way flag the caller raises and the agent observes.

    The agent never cancels on its own; it only checks the flag at the
    documented :class:`Checkpoint` locations so that in-flight work finishes
    its current step first.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        LOGGER.debug("Cancellation requested%s", f": {reason}" if reason else "")
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self, checkpoint: Checkpoint) -> None:
        if self._cancelled:
            raise AgentCancelledError(checkpoint.value, self._reason)

    async def wait(self) -> None:
        """Suspend until :meth:`cancel` is called."""

        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()


def notify_status(sink: StatusSink | None, status: AgentStatus) -> None:
    """Deliver ``status`` to ``sink`` without letting the sink break the run."""

    if sink is None:
        return
    try:
        sink(status)
    except Exception:
        LOGGER.debug("Status sink raised while handling %s", status.value, exc_info=True)

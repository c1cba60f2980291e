"""ProgressChannel - bounded stream of provisioning steps.

The orchestrator produces ProgressEvents while creating a session; a
transport (the SSE endpoint) consumes them. The stream always ends with
exactly one terminal event: ``complete`` carrying the session, or ``error``
carrying the failure message.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from deskgate.models.session import DesktopSession

logger = structlog.get_logger()


class ProgressStep(str, Enum):
    """Named provisioning steps, in order."""

    INIT = "init"
    CONTAINER = "container"
    STARTING = "starting"
    VNC_WAIT = "vnc-wait"
    XTERM = "xterm"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One step notification."""

    step: ProgressStep
    message: str = ""
    session: "DesktopSession | None" = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.step in (ProgressStep.COMPLETE, ProgressStep.ERROR)

    def payload(self) -> dict[str, Any]:
        """Event body: the session on completion, the error on failure."""
        if self.step is ProgressStep.COMPLETE and self.session is not None:
            return self.session.to_dict()
        if self.step is ProgressStep.ERROR:
            return {"error": self.error or self.message}
        return {"step": self.step.value, "message": self.message}


class ProgressChannel:
    """Single-producer, single-consumer bounded channel of ProgressEvents.

    Step events are dropped when the consumer falls behind and the queue is
    full (they are informational); terminal events always get through.
    """

    def __init__(self, maxsize: int = 16) -> None:
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=max(maxsize, 1))
        self._closed = False
        self._log = logger.bind(component="progress")

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, step: ProgressStep, message: str = "") -> None:
        """Publish a non-terminal step (non-blocking, may drop)."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(ProgressEvent(step=step, message=message))
        except asyncio.QueueFull:
            self._log.debug("progress.dropped", step=step.value)

    def complete(self, session: "DesktopSession") -> None:
        self._finish(
            ProgressEvent(
                step=ProgressStep.COMPLETE,
                message="Session ready",
                session=session,
            )
        )

    def fail(self, error: str) -> None:
        self._finish(ProgressEvent(step=ProgressStep.ERROR, message=error, error=error))

    def _finish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._closed = True
        # Make room so the terminal event is never lost
        while self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until (and including) the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return

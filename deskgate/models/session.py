"""Desktop session data model.

DesktopSession represents one user's provisioned remote-display instance.
- 1 DesktopSession = 1 Container (+ optional host-side display client)
- Lives only in memory; owned by SessionRegistry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# X11 display :N listens on TCP 6000 + N; containers run display :1
X11_BASE_PORT = 6000
X11_DISPLAY_OFFSET = 1


class LifecycleState(str, Enum):
    """Session lifecycle state. Only moves forward."""

    PROVISIONING = "provisioning"
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


_STATE_ORDER = {
    LifecycleState.PROVISIONING: 0,
    LifecycleState.RUNNING: 1,
    LifecycleState.TERMINATING: 2,
    LifecycleState.TERMINATED: 3,
}


class InvalidTransitionError(RuntimeError):
    """Attempted to move a session's lifecycle state backwards."""


def aux_port_for(display_index: int) -> int:
    """Host port exposing the raw X11 protocol for a display index."""
    return X11_BASE_PORT + display_index + X11_DISPLAY_OFFSET


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DesktopSession:
    """A user's desktop session."""

    session_id: str
    owner_id: str
    owner_name: str
    host_port: int
    display_index: int
    container_name: str
    container_ref: str | None = None
    aux_process_id: int | None = None
    routing_url: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    lifecycle_state: LifecycleState = LifecycleState.PROVISIONING

    @property
    def aux_port(self) -> int:
        return aux_port_for(self.display_index)

    @property
    def x11_display(self) -> int:
        """Display number the host-side client connects to on localhost."""
        return self.display_index + X11_DISPLAY_OFFSET

    def advance(self, state: LifecycleState) -> None:
        """Move to ``state``; staying put is allowed, going back is not."""
        if _STATE_ORDER[state] < _STATE_ORDER[self.lifecycle_state]:
            raise InvalidTransitionError(
                f"Session {self.session_id}: {self.lifecycle_state.value} -> {state.value}"
            )
        self.lifecycle_state = state

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "container_id": self.container_ref,
            "container_name": self.container_name,
            "host_port": self.host_port,
            "display_index": self.display_index,
            "aux_port": self.aux_port,
            "aux_process_id": self.aux_process_id,
            "url": self.routing_url,
            "created_at": self.created_at.isoformat(),
            "state": self.lifecycle_state.value,
        }

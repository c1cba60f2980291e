"""Data models."""

from deskgate.models.session import DesktopSession, LifecycleState, aux_port_for

__all__ = [
    "DesktopSession",
    "LifecycleState",
    "aux_port_for",
]

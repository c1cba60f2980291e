"""Session management: port allocation, registry, progress and orchestration."""

from deskgate.managers.session.orchestrator import SessionOrchestrator, SessionView, SystemStats
from deskgate.managers.session.ports import allocate_port, allocate_session_port
from deskgate.managers.session.progress import ProgressChannel, ProgressEvent, ProgressStep
from deskgate.managers.session.registry import SessionRegistry

__all__ = [
    "ProgressChannel",
    "ProgressEvent",
    "ProgressStep",
    "SessionOrchestrator",
    "SessionRegistry",
    "SessionView",
    "SystemStats",
    "allocate_port",
    "allocate_session_port",
]

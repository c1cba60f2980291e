"""Driver base class - container runtime abstraction.

Driver is responsible ONLY for container lifecycle management.
It does NOT handle:
- Authentication / ownership
- Port allocation
- Session registry bookkeeping
- Rollback policy (the orchestrator decides what to clean up)

"Already gone" outcomes (not found on stop/remove, already stopped) are
success, so every cleanup path can call stop/remove more than once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ContainerStatus(str, Enum):
    """Container status from driver's perspective."""

    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    REMOVING = "removing"
    NOT_FOUND = "not_found"


@dataclass
class ContainerState:
    """Result of inspecting a single container."""

    container_id: str
    status: ContainerStatus
    started_at: datetime | None = None
    exit_code: int | None = None

    @property
    def running(self) -> bool:
        return self.status == ContainerStatus.RUNNING


@dataclass
class ContainerSummary:
    """Container descriptor returned by list_by_label."""

    container_id: str
    name: str
    status: ContainerStatus
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.status == ContainerStatus.RUNNING


@dataclass
class PortBinding:
    """Container port published on a host port."""

    container_port: int
    host_port: int
    protocol: str = "tcp"


@dataclass
class ContainerSpec:
    """Everything needed to create one session container."""

    name: str
    image: str
    env: dict[str, str] = field(default_factory=dict)
    ports: list[PortBinding] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    shm_size_bytes: int | None = None
    auto_remove: bool = True


class Driver(ABC):
    """Abstract driver interface for container lifecycle management.

    All containers created by deskgate MUST carry the discovery label so the
    shutdown sweep can find them independently of registry state.
    """

    @abstractmethod
    async def create(self, spec: ContainerSpec) -> str:
        """Create a container without starting it.

        Returns:
            Container ID
        """
        ...

    @abstractmethod
    async def start(self, container_id: str) -> None:
        """Start a created container."""
        ...

    @abstractmethod
    async def inspect(self, container_id: str) -> ContainerState:
        """Get container state; NOT_FOUND status when it does not exist."""
        ...

    @abstractmethod
    async def stop(self, container_id: str, *, grace_seconds: int) -> None:
        """Stop a running container, waiting up to grace_seconds before SIGKILL."""
        ...

    @abstractmethod
    async def remove(self, container_id: str, *, force: bool = False) -> None:
        """Remove a container."""
        ...

    @abstractmethod
    async def list_by_label(
        self,
        key: str,
        value: str,
        *,
        include_stopped: bool = True,
    ) -> list[ContainerSummary]:
        """List containers carrying label key=value."""
        ...

    @abstractmethod
    async def replace_existing(self, name: str, *, grace_seconds: int) -> bool:
        """Stop (if running) and remove a container by name.

        Returns:
            True if a container with that name existed
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        return None

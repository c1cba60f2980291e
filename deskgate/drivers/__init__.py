"""Driver layer - container runtime abstraction."""

from deskgate.drivers.base import (
    ContainerSpec,
    ContainerState,
    ContainerStatus,
    ContainerSummary,
    Driver,
    PortBinding,
)
from deskgate.drivers.docker import DockerDriver

__all__ = [
    "ContainerSpec",
    "ContainerState",
    "ContainerStatus",
    "ContainerSummary",
    "DockerDriver",
    "Driver",
    "PortBinding",
]

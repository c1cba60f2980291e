"""Docker driver."""

from deskgate.drivers.docker.docker import DockerDriver

__all__ = ["DockerDriver"]

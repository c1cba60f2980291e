"""Docker driver implementation using aiodocker.

Supports:
- Running deskgate inside a container with mounted docker.sock
- Running deskgate on host with direct docker.sock access
"""

from __future__ import annotations

import re
from datetime import datetime

import aiodocker
import structlog
from aiodocker.exceptions import DockerError

from deskgate.drivers.base import (
    ContainerSpec,
    ContainerState,
    ContainerStatus,
    ContainerSummary,
    Driver,
)

logger = structlog.get_logger()

# Docker reports nanosecond precision; datetime keeps microseconds
_FRACTION_RE = re.compile(r"\.(\d{6})\d*")
_ZERO_TIME_PREFIX = "0001-01-01"


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Docker RFC3339 timestamp (None for the zero value)."""
    if not value or value.startswith(_ZERO_TIME_PREFIX):
        return None
    value = _FRACTION_RE.sub(r".\1", value).replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _map_status(docker_status: str) -> ContainerStatus:
    if docker_status == "running":
        return ContainerStatus.RUNNING
    if docker_status == "created":
        return ContainerStatus.CREATED
    if docker_status == "removing":
        return ContainerStatus.REMOVING
    return ContainerStatus.EXITED


def build_container_config(spec: ContainerSpec) -> dict:
    """Translate a ContainerSpec into a Docker Engine create payload."""
    exposed_ports = {}
    port_bindings = {}
    for binding in spec.ports:
        key = f"{binding.container_port}/{binding.protocol}"
        exposed_ports[key] = {}
        port_bindings[key] = [{"HostPort": str(binding.host_port)}]

    host_config: dict = {
        "PortBindings": port_bindings,
        "AutoRemove": spec.auto_remove,
    }
    if spec.shm_size_bytes:
        host_config["ShmSize"] = spec.shm_size_bytes

    return {
        "Image": spec.image,
        "Env": [f"{k}={v}" for k, v in spec.env.items()],
        "ExposedPorts": exposed_ports,
        "Labels": dict(spec.labels),
        "HostConfig": host_config,
    }


class DockerDriver(Driver):
    """Docker driver implementation using aiodocker."""

    def __init__(self, socket_url: str = "unix:///var/run/docker.sock") -> None:
        if socket_url.startswith(("unix://", "tcp://", "http://", "https://")):
            self._socket = socket_url
        else:
            self._socket = f"unix://{socket_url}"

        self._log = logger.bind(driver="docker")
        self._client: aiodocker.Docker | None = None

    async def _get_client(self) -> aiodocker.Docker:
        """Get or create the aiodocker client."""
        if self._client is None:
            self._client = aiodocker.Docker(url=self._socket)
        return self._client

    async def close(self) -> None:
        """Close the docker client."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def create(self, spec: ContainerSpec) -> str:
        """Create a container without starting it."""
        client = await self._get_client()

        self._log.info(
            "docker.create",
            name=spec.name,
            image=spec.image,
            ports=[(p.container_port, p.host_port) for p in spec.ports],
        )

        container = await client.containers.create(
            config=build_container_config(spec),
            name=spec.name,
        )

        container_id = container.id
        self._log.info("docker.created", container_id=container_id, name=spec.name)
        return container_id

    async def start(self, container_id: str) -> None:
        client = await self._get_client()
        self._log.info("docker.start", container_id=container_id)

        container = client.containers.container(container_id)
        await container.start()

        self._log.info("docker.started", container_id=container_id)

    async def inspect(self, container_id: str) -> ContainerState:
        client = await self._get_client()

        try:
            container = client.containers.container(container_id)
            info = await container.show()
        except DockerError as e:
            if e.status == 404:
                return ContainerState(
                    container_id=container_id,
                    status=ContainerStatus.NOT_FOUND,
                )
            raise

        state = info.get("State", {})
        return ContainerState(
            container_id=container_id,
            status=_map_status(state.get("Status", "unknown")),
            started_at=_parse_timestamp(state.get("StartedAt")),
            exit_code=state.get("ExitCode"),
        )

    async def stop(self, container_id: str, *, grace_seconds: int) -> None:
        client = await self._get_client()
        self._log.info("docker.stop", container_id=container_id, grace_seconds=grace_seconds)

        try:
            container = client.containers.container(container_id)
            await container.stop(t=grace_seconds)
        except DockerError as e:
            if e.status == 404:
                self._log.warning("docker.stop.not_found", container_id=container_id)
            elif e.status == 304:
                self._log.info("docker.stop.already_stopped", container_id=container_id)
            else:
                raise

    async def remove(self, container_id: str, *, force: bool = False) -> None:
        client = await self._get_client()
        self._log.info("docker.remove", container_id=container_id, force=force)

        try:
            container = client.containers.container(container_id)
            await container.delete(force=force)
        except DockerError as e:
            if e.status == 404:
                self._log.warning("docker.remove.not_found", container_id=container_id)
            elif e.status == 409:
                # AutoRemove already reclaiming it
                self._log.info("docker.remove.in_progress", container_id=container_id)
            else:
                raise

    async def list_by_label(
        self,
        key: str,
        value: str,
        *,
        include_stopped: bool = True,
    ) -> list[ContainerSummary]:
        client = await self._get_client()

        containers = await client.containers.list(
            all=include_stopped,
            filters={"label": [f"{key}={value}"]},
        )

        summaries = []
        for container in containers:
            names = container["Names"] or []
            summaries.append(
                ContainerSummary(
                    container_id=container.id,
                    name=names[0].lstrip("/") if names else "",
                    status=_map_status(container["State"]),
                    labels=container["Labels"] or {},
                )
            )
        return summaries

    async def replace_existing(self, name: str, *, grace_seconds: int) -> bool:
        client = await self._get_client()

        try:
            existing = await client.containers.get(name)
        except DockerError as e:
            if e.status == 404:
                return False
            raise

        running = bool(existing["State"].get("Running", False))
        self._log.info("docker.replace_existing", name=name, running=running)

        if running:
            await self.stop(existing.id, grace_seconds=grace_seconds)
        # Stopping may already have triggered AutoRemove; remove() tolerates that
        await self.remove(existing.id, force=True)
        return True

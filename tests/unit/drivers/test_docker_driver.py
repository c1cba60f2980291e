"""Unit tests for DockerDriver against a mocked aiodocker client."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiodocker.exceptions import DockerError

from deskgate.drivers import ContainerSpec, ContainerStatus, DockerDriver, PortBinding
from deskgate.drivers.docker.docker import build_container_config


class DockerContainerStub:
    """Minimal stand-in for aiodocker's DockerContainer."""

    def __init__(self, container_id: str, data: dict) -> None:
        self.id = container_id
        self._data = data
        self.stop = AsyncMock()
        self.delete = AsyncMock()
        self.start = AsyncMock()
        self.show = AsyncMock(return_value=data)

    def __getitem__(self, key):
        return self._data[key]


def docker_error(status: int) -> DockerError:
    return DockerError(status, {"message": f"status {status}"})


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def docker_driver(client: MagicMock) -> DockerDriver:
    driver = DockerDriver("unix:///var/run/docker.sock")
    driver._client = client
    return driver


def sample_spec() -> ContainerSpec:
    return ContainerSpec(
        name="x11-bridge-alice-0",
        image="x11-web-bridge",
        env={"DISPLAY": ":1", "USER_ID": "alice"},
        ports=[PortBinding(6080, 6080), PortBinding(6001, 6001)],
        labels={"deskgate.managed": "true"},
        shm_size_bytes=256 * 1024 * 1024,
    )


def test_build_container_config():
    config = build_container_config(sample_spec())

    assert config["Image"] == "x11-web-bridge"
    assert config["Env"] == ["DISPLAY=:1", "USER_ID=alice"]
    assert config["ExposedPorts"] == {"6080/tcp": {}, "6001/tcp": {}}
    assert config["HostConfig"]["PortBindings"] == {
        "6080/tcp": [{"HostPort": "6080"}],
        "6001/tcp": [{"HostPort": "6001"}],
    }
    assert config["HostConfig"]["AutoRemove"] is True
    assert config["HostConfig"]["ShmSize"] == 256 * 1024 * 1024
    assert config["Labels"] == {"deskgate.managed": "true"}


def test_bare_socket_path_gets_unix_scheme():
    assert DockerDriver("/run/docker.sock")._socket == "unix:///run/docker.sock"


async def test_create_passes_name_and_config(docker_driver: DockerDriver, client: MagicMock):
    client.containers.create = AsyncMock(return_value=DockerContainerStub("abc123", {}))

    container_id = await docker_driver.create(sample_spec())

    assert container_id == "abc123"
    kwargs = client.containers.create.await_args.kwargs
    assert kwargs["name"] == "x11-bridge-alice-0"
    assert kwargs["config"]["Image"] == "x11-web-bridge"


class TestInspect:
    async def test_running_container(self, docker_driver: DockerDriver, client: MagicMock):
        stub = DockerContainerStub(
            "abc123",
            {"State": {"Status": "running", "StartedAt": "2024-01-02T03:04:05.123456789Z", "ExitCode": 0}},
        )
        client.containers.container.return_value = stub

        state = await docker_driver.inspect("abc123")

        assert state.running
        assert state.started_at == datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)

    async def test_missing_container(self, docker_driver: DockerDriver, client: MagicMock):
        stub = DockerContainerStub("abc123", {})
        stub.show.side_effect = docker_error(404)
        client.containers.container.return_value = stub

        state = await docker_driver.inspect("abc123")

        assert state.status == ContainerStatus.NOT_FOUND
        assert not state.running

    async def test_other_errors_propagate(self, docker_driver: DockerDriver, client: MagicMock):
        stub = DockerContainerStub("abc123", {})
        stub.show.side_effect = docker_error(500)
        client.containers.container.return_value = stub

        with pytest.raises(DockerError):
            await docker_driver.inspect("abc123")


class TestStopAndRemove:
    @pytest.mark.parametrize("status", [304, 404])
    async def test_stop_tolerates_already_stopped_and_missing(
        self, docker_driver: DockerDriver, client: MagicMock, status: int
    ):
        stub = DockerContainerStub("abc123", {})
        stub.stop.side_effect = docker_error(status)
        client.containers.container.return_value = stub

        await docker_driver.stop("abc123", grace_seconds=5)

        stub.stop.assert_awaited_once_with(t=5)

    async def test_stop_raises_on_server_error(self, docker_driver: DockerDriver, client: MagicMock):
        stub = DockerContainerStub("abc123", {})
        stub.stop.side_effect = docker_error(500)
        client.containers.container.return_value = stub

        with pytest.raises(DockerError):
            await docker_driver.stop("abc123", grace_seconds=5)

    @pytest.mark.parametrize("status", [404, 409])
    async def test_remove_tolerates_missing_and_in_progress(
        self, docker_driver: DockerDriver, client: MagicMock, status: int
    ):
        stub = DockerContainerStub("abc123", {})
        stub.delete.side_effect = docker_error(status)
        client.containers.container.return_value = stub

        await docker_driver.remove("abc123", force=True)

        stub.delete.assert_awaited_once_with(force=True)


async def test_list_by_label(docker_driver: DockerDriver, client: MagicMock):
    client.containers.list = AsyncMock(
        return_value=[
            DockerContainerStub(
                "abc123",
                {"Names": ["/x11-bridge-alice-0"], "State": "running", "Labels": {"deskgate.managed": "true"}},
            ),
            DockerContainerStub(
                "def456",
                {"Names": ["/x11-bridge-bob-1"], "State": "exited", "Labels": {"deskgate.managed": "true"}},
            ),
        ]
    )

    summaries = await docker_driver.list_by_label("deskgate.managed", "true", include_stopped=True)

    client.containers.list.assert_awaited_once_with(all=True, filters={"label": ["deskgate.managed=true"]})
    assert [(s.container_id, s.name, s.running) for s in summaries] == [
        ("abc123", "x11-bridge-alice-0", True),
        ("def456", "x11-bridge-bob-1", False),
    ]


class TestReplaceExisting:
    async def test_running_container_is_stopped_then_removed(self, docker_driver: DockerDriver, client: MagicMock):
        existing = DockerContainerStub("old1", {"State": {"Running": True}})
        client.containers.get = AsyncMock(return_value=existing)
        client.containers.container.return_value = existing

        assert await docker_driver.replace_existing("x11-bridge-alice-0", grace_seconds=5) is True

        existing.stop.assert_awaited_once_with(t=5)
        existing.delete.assert_awaited_once_with(force=True)

    async def test_no_existing_container(self, docker_driver: DockerDriver, client: MagicMock):
        client.containers.get = AsyncMock(side_effect=docker_error(404))

        assert await docker_driver.replace_existing("x11-bridge-alice-0", grace_seconds=5) is False

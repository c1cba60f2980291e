"""Unit tests for DisplaySupervisor (real subprocesses, Python as the client)."""

from __future__ import annotations

import asyncio
import signal
import sys
from unittest.mock import patch

import pytest

from deskgate.config import DisplayConfig
from deskgate.services.display import DisplaySupervisor
from tests.fakes import make_session

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")


class ScriptSupervisor(DisplaySupervisor):
    """Runs a Python one-liner instead of xterm."""

    def __init__(self, script: str, **config) -> None:
        super().__init__(DisplayConfig(**config))
        self._script = script

    def build_command(self, session) -> list[str]:
        return [sys.executable, "-c", self._script]


def test_default_command_targets_session_display():
    supervisor = DisplaySupervisor(DisplayConfig())
    session = make_session("s1", owner_id="alice", host_port=6082)

    assert supervisor.build_command(session) == [
        "xterm",
        "-display",
        "localhost:3",
        "-fa",
        "Monospace",
        "-fs",
        "12",
        "-title",
        "Alice's Session",
    ]


async def test_disabled_supervisor_spawns_nothing():
    supervisor = DisplaySupervisor(DisplayConfig(enabled=False))

    assert await supervisor.spawn(make_session("s1")) is None
    assert supervisor.tracked_pids() == []


async def test_exit_resolves_future_with_returncode():
    supervisor = ScriptSupervisor("import sys; sys.exit(3)")

    client = await supervisor.spawn(make_session("s1"))
    result = await asyncio.wait_for(client.exited, timeout=10)

    assert result.pid == client.pid
    assert result.returncode == 3
    assert result.signal is None
    assert supervisor.tracked_pids() == []
    await supervisor.close()


async def test_terminate_reports_signal():
    supervisor = ScriptSupervisor("import time; time.sleep(60)")
    client = await supervisor.spawn(make_session("s1"))

    assert client.pid in supervisor.tracked_pids()
    assert supervisor.terminate(client.pid) is True
    result = await asyncio.wait_for(client.exited, timeout=10)

    assert result.signal == signal.SIGTERM
    await supervisor.close()


def test_terminate_missing_process_is_not_an_error():
    supervisor = DisplaySupervisor(DisplayConfig())

    with patch("deskgate.services.display.supervisor.os.kill", side_effect=ProcessLookupError):
        assert supervisor.terminate(999999) is False


async def test_close_cancels_watchers():
    supervisor = ScriptSupervisor("import time; time.sleep(60)")
    client = await supervisor.spawn(make_session("s1"))

    await supervisor.close()

    assert not client.exited.done()
    supervisor.terminate(client.pid)

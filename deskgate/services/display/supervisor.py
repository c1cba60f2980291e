"""DisplaySupervisor - host-side display client processes.

Each running session gets one host process (xterm by default) attached to the
X11 display the session's container publishes on localhost. When that process
exits, for whatever reason, the session is over: the supervisor resolves the
client's ``exited`` future exactly once and never restarts the process.
"""

from __future__ import annotations

import asyncio
import os
import signal
from asyncio import subprocess
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from deskgate.config import DisplayConfig
    from deskgate.models.session import DesktopSession

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ProcessExit:
    """How a display client ended."""

    pid: int
    returncode: int | None
    signal: int | None = None


@dataclass
class DisplayClient:
    """Handle to a spawned display client."""

    pid: int
    session_id: str
    exited: asyncio.Future[ProcessExit] = field(repr=False)


class DisplaySupervisor:
    """Spawns and watches display client processes."""

    def __init__(self, config: "DisplayConfig") -> None:
        self._config = config
        self._log = logger.bind(service="display")
        self._processes: dict[int, subprocess.Process] = {}
        self._watchers: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def build_command(self, session: "DesktopSession") -> list[str]:
        return [
            self._config.command,
            "-display",
            f"localhost:{session.x11_display}",
            "-fa",
            self._config.font,
            "-fs",
            str(self._config.font_size),
            "-title",
            f"{session.owner_name}'s Session",
        ]

    async def spawn(self, session: "DesktopSession") -> DisplayClient | None:
        """Start the display client for a session.

        Returns:
            The client handle, or None when display clients are disabled

        Raises:
            OSError: If the command cannot be executed
        """
        if not self._config.enabled:
            return None

        cmd = self.build_command(session)
        self._log.info(
            "display.spawn",
            session_id=session.session_id,
            display=f"localhost:{session.x11_display}",
            command=cmd[0],
        )

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

        exited: asyncio.Future[ProcessExit] = asyncio.get_running_loop().create_future()
        self._processes[proc.pid] = proc

        task = asyncio.create_task(
            self._watch(proc, exited, session.session_id),
            name=f"display-watch-{proc.pid}",
        )
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)

        self._log.info("display.spawned", session_id=session.session_id, pid=proc.pid)
        return DisplayClient(pid=proc.pid, session_id=session.session_id, exited=exited)

    async def _watch(
        self,
        proc: subprocess.Process,
        exited: asyncio.Future[ProcessExit],
        session_id: str,
    ) -> None:
        try:
            returncode = await proc.wait()
        finally:
            self._processes.pop(proc.pid, None)

        sig = -returncode if returncode is not None and returncode < 0 else None
        self._log.info(
            "display.exited",
            session_id=session_id,
            pid=proc.pid,
            returncode=returncode,
            signal=sig,
        )
        if not exited.done():
            exited.set_result(ProcessExit(pid=proc.pid, returncode=returncode, signal=sig))

    def terminate(self, pid: int) -> bool:
        """Send SIGTERM to a display client.

        Returns:
            False if the process was already gone
        """
        proc = self._processes.get(pid)
        try:
            if proc is not None:
                proc.send_signal(signal.SIGTERM)
            else:
                # Not (or no longer) tracked; still try the raw pid
                os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._log.info("display.terminate.already_gone", pid=pid)
            return False

        self._log.info("display.terminated", pid=pid)
        return True

    def tracked_pids(self) -> list[int]:
        return list(self._processes)

    async def close(self) -> None:
        """Stop watching; processes themselves are left to shutdown()."""
        for task in list(self._watchers):
            task.cancel()
        if self._watchers:
            await asyncio.gather(*self._watchers, return_exceptions=True)
        self._watchers.clear()

"""SessionOrchestrator - desktop session lifecycle.

Composes port allocation, the container driver, the display supervisor and
the registry. It is the only component that mutates session state.

Cleanup policy: provisioning failures roll back and propagate; every other
cleanup step (stop, remove, kill) is best effort, logged and never raised,
so destroy and shutdown always make forward progress.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Any

import structlog

from deskgate.config import Settings, get_settings
from deskgate.drivers.base import ContainerSpec, ContainerState, PortBinding
from deskgate.errors import ProvisioningError
from deskgate.managers.session.ports import allocate_session_port
from deskgate.managers.session.progress import ProgressChannel, ProgressStep
from deskgate.models.session import DesktopSession, LifecycleState

if TYPE_CHECKING:
    from deskgate.drivers.base import Driver
    from deskgate.managers.session.registry import SessionRegistry
    from deskgate.services.display import DisplayClient, DisplaySupervisor, ProcessExit

logger = structlog.get_logger()

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True, slots=True)
class SessionView:
    """A session together with what the runtime reports about it."""

    session: DesktopSession
    status: str
    started_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.session.to_dict()
        data["status"] = self.status
        data["uptime"] = self.started_at.isoformat() if self.started_at else None
        return data


@dataclass(frozen=True, slots=True)
class SystemStats:
    """Registry size vs. labelled containers actually running.

    The two counts can diverge (orphaned containers); that is a diagnostic,
    not an error.
    """

    active_sessions: int
    running_containers: int
    sessions: list[dict[str, Any]]


class SessionOrchestrator:
    """Creates, tracks and tears down desktop sessions."""

    def __init__(
        self,
        driver: "Driver",
        registry: "SessionRegistry",
        supervisor: "DisplaySupervisor",
        settings: Settings | None = None,
    ) -> None:
        self._driver = driver
        self._registry = registry
        self._supervisor = supervisor
        self._settings = settings or get_settings()
        self._config = self._settings.sessions
        self._log = logger.bind(manager="session")

        self._clients: dict[str, "DisplayClient"] = {}
        self._teardown_tasks: set[asyncio.Task] = set()
        self._create_tasks: set[asyncio.Task] = set()
        self._shutting_down = False

    @property
    def registry(self) -> "SessionRegistry":
        return self._registry

    # Naming and container spec

    def container_name(self, owner_id: str, display_index: int) -> str:
        owner = _UNSAFE_NAME_CHARS.sub("-", owner_id)
        return f"{self._config.name_prefix}-{owner}-{display_index}"

    def routing_url(self, session_id: str) -> str:
        gateway = self._settings.gateway
        prefix = f"{gateway.prefix}/{session_id}"
        return (
            f"{self._settings.server.base_url()}/{prefix}/{gateway.landing_page}"
            f"?path={prefix}/{gateway.websocket_path}&autoconnect=true"
        )

    def build_container_spec(self, session: DesktopSession) -> ContainerSpec:
        cfg = self._config
        return ContainerSpec(
            name=session.container_name,
            image=cfg.image,
            env={
                "DISPLAY": ":1",
                "VNC_PORT": str(5900 + session.display_index),
                "NOVNC_PORT": str(cfg.container_web_port),
                "X11_PORT": str(cfg.container_x11_port),
                "USER_ID": session.owner_id,
                "USERNAME": session.owner_name,
                "SESSION_ID": session.session_id,
            },
            ports=[
                PortBinding(container_port=cfg.container_web_port, host_port=session.host_port),
                PortBinding(container_port=cfg.container_x11_port, host_port=session.aux_port),
            ],
            labels={
                cfg.label_key: cfg.label_value,
                "deskgate.owner_id": session.owner_id,
                "deskgate.owner_name": session.owner_name,
                "deskgate.session_id": session.session_id,
            },
            shm_size_bytes=cfg.shm_size_bytes,
            auto_remove=cfg.auto_remove,
        )

    # Create

    async def create(
        self,
        owner_id: str,
        owner_name: str,
        *,
        progress: ProgressChannel | None = None,
    ) -> DesktopSession:
        """Provision a new session for owner_id.

        Args:
            owner_id: Requesting principal id
            owner_name: Display name, shown in the display client title
            progress: Optional channel receiving step events

        Returns:
            The registered, running session

        Raises:
            ProvisioningError: If any step failed (resources rolled back)
        """
        emit = progress.emit if progress is not None else (lambda *_args: None)
        emit(ProgressStep.INIT, "Allocating resources")

        # Allocation and reservation happen with no await in between
        base_port = self._config.base_port
        host_port = allocate_session_port(self._registry.ports_in_use(), base_port)
        display_index = host_port - base_port
        session_id = f"sess-{uuid.uuid4().hex[:12]}"
        session = DesktopSession(
            session_id=session_id,
            owner_id=owner_id,
            owner_name=owner_name,
            host_port=host_port,
            display_index=display_index,
            container_name=self.container_name(owner_id, display_index),
            routing_url=self.routing_url(session_id),
        )
        self._registry.reserve(session)

        self._log.info(
            "session.create",
            session_id=session_id,
            owner_id=owner_id,
            host_port=host_port,
            aux_port=session.aux_port,
        )

        client: DisplayClient | None = None
        try:
            emit(ProgressStep.CONTAINER, "Creating container")
            replaced = await self._driver.replace_existing(
                session.container_name,
                grace_seconds=self._config.stop_grace_seconds,
            )
            if replaced:
                self._log.info(
                    "session.create.replaced_stale_container",
                    session_id=session_id,
                    name=session.container_name,
                )
            session.container_ref = await self._driver.create(self.build_container_spec(session))

            emit(ProgressStep.STARTING, "Starting container")
            await self._driver.start(session.container_ref)

            emit(ProgressStep.VNC_WAIT, "Waiting for display server")
            await asyncio.sleep(self._config.warmup_seconds)

            emit(ProgressStep.XTERM, "Launching display client")
            client = await self._supervisor.spawn(session)
        except asyncio.CancelledError:
            await self._rollback(session, client)
            if progress is not None:
                progress.fail("Session creation cancelled")
            raise
        except Exception as exc:
            await self._rollback(session, client)
            message = f"Failed to create session: {exc}"
            self._log.error("session.create_failed", session_id=session_id, error=str(exc))
            if progress is not None:
                progress.fail(message)
            raise ProvisioningError(message, details={"session_id": session_id}) from exc

        if client is not None:
            session.aux_process_id = client.pid
            self._clients[session_id] = client
        session.advance(LifecycleState.RUNNING)
        self._registry.insert(session)
        if client is not None:
            # Subscribed before any await, so an immediate exit is not missed
            client.exited.add_done_callback(partial(self._on_display_exit, session_id))

        self._log.info("session.created", session_id=session_id, container_id=session.container_ref)
        if progress is not None:
            progress.complete(session)
        return session

    def start_create(
        self,
        owner_id: str,
        owner_name: str,
        progress: ProgressChannel,
    ) -> asyncio.Task:
        """Run create() detached from the caller.

        The outcome is reported only through progress; a caller going away
        does not cancel provisioning.
        """
        task = asyncio.create_task(
            self._create_detached(owner_id, owner_name, progress),
            name=f"create-{owner_id}",
        )
        self._create_tasks.add(task)
        task.add_done_callback(self._create_tasks.discard)
        return task

    async def _create_detached(
        self,
        owner_id: str,
        owner_name: str,
        progress: ProgressChannel,
    ) -> DesktopSession | None:
        try:
            return await self.create(owner_id, owner_name, progress=progress)
        except ProvisioningError:
            # Already delivered as the terminal progress event
            return None

    async def _rollback(self, session: DesktopSession, client: "DisplayClient | None") -> None:
        try:
            if client is not None:
                self._terminate_pid(client.pid)
            if session.container_ref:
                try:
                    await self._driver.remove(session.container_ref, force=True)
                except Exception as exc:
                    self._log.warning(
                        "session.rollback.remove_failed",
                        session_id=session.session_id,
                        container_id=session.container_ref,
                        error=str(exc),
                    )
        finally:
            # Port stays reserved until the container is gone
            self._registry.release(session.session_id)

    # Destroy

    async def destroy(self, owner_id: str, session_id: str) -> bool:
        """Destroy a session owned by owner_id.

        Returns:
            False (and does nothing) if absent or owned by someone else
        """
        session = self._registry.get(session_id)
        if session is None or session.owner_id != owner_id:
            return False

        await self._teardown(session)
        return True

    async def destroy_any(self, session_id: str) -> bool:
        """Admin destroy on behalf of the session's owner."""
        session = self._registry.get(session_id)
        if session is None:
            return False
        return await self.destroy(session.owner_id, session_id)

    async def destroy_all_for_owner(self, owner_id: str) -> int:
        count = 0
        for session_id in sorted(self._registry.get_by_owner(owner_id)):
            if await self.destroy(owner_id, session_id):
                count += 1
        return count

    async def _teardown(self, session: DesktopSession, *, kill_display: bool = True) -> None:
        """Best-effort teardown; the registry entry is always removed."""
        self._log.info("session.destroy", session_id=session.session_id, owner_id=session.owner_id)
        session.advance(LifecycleState.TERMINATING)

        if kill_display:
            self._kill_display(session)
        await self._reclaim_container(session)

        self._registry.remove(session.session_id)
        self._log.info("session.destroyed", session_id=session.session_id)

    def _kill_display(self, session: DesktopSession) -> None:
        self._clients.pop(session.session_id, None)
        if session.aux_process_id:
            self._terminate_pid(session.aux_process_id)

    def _terminate_pid(self, pid: int) -> None:
        try:
            self._supervisor.terminate(pid)
        except Exception as exc:
            self._log.warning("session.display_kill_failed", pid=pid, error=str(exc))

    async def _reclaim_container(self, session: DesktopSession) -> None:
        container_id = session.container_ref
        if not container_id:
            return

        try:
            await self._driver.stop(container_id, grace_seconds=self._config.stop_grace_seconds)
        except Exception as exc:
            self._log.warning(
                "session.stop_failed",
                session_id=session.session_id,
                container_id=container_id,
                error=str(exc),
            )

        if self._config.auto_remove:
            return

        try:
            await self._driver.remove(container_id, force=True)
        except Exception as exc:
            self._log.warning(
                "session.remove_failed",
                session_id=session.session_id,
                container_id=container_id,
                error=str(exc),
            )

    # Auto-teardown

    def _on_display_exit(self, session_id: str, exited: "asyncio.Future[ProcessExit]") -> None:
        if exited.cancelled():
            return
        result = exited.result()
        self._clients.pop(session_id, None)

        if self._shutting_down:
            return

        session = self._registry.get(session_id)
        # Absent: already destroyed. TERMINATING: a manual destroy is in flight.
        if session is None or session.lifecycle_state != LifecycleState.RUNNING:
            return

        self._log.info(
            "session.auto_teardown",
            session_id=session_id,
            pid=result.pid,
            returncode=result.returncode,
            signal=result.signal,
        )
        task = asyncio.create_task(
            self._teardown(session, kill_display=False),
            name=f"auto-teardown-{session_id}",
        )
        self._teardown_tasks.add(task)
        task.add_done_callback(self._teardown_tasks.discard)

    async def wait_for_teardowns(self) -> None:
        """Wait for in-flight auto-teardown tasks (used by shutdown and tests)."""
        if self._teardown_tasks:
            await asyncio.gather(*list(self._teardown_tasks), return_exceptions=True)

    # Queries

    def list_for_owner(self, owner_id: str) -> list[DesktopSession]:
        sessions = [
            s
            for s in (self._registry.get(sid) for sid in self._registry.get_by_owner(owner_id))
            if s is not None
        ]
        return sorted(sessions, key=lambda s: s.created_at)

    async def get_one(self, owner_id: str, session_id: str) -> DesktopSession | None:
        """Get an owned session, purging it if its container is not running."""
        session = self._registry.get(session_id)
        if session is None or session.owner_id != owner_id:
            return None

        state = await self._probe(session)
        if state is not None and not state.running:
            self._purge_stale(session, state)
            return None
        return session

    async def list_all(self) -> list[SessionView]:
        """All sessions (admin), purging any whose container is not running."""
        sessions = self._registry.all_live()
        states = await asyncio.gather(*(self._probe(s) for s in sessions))

        views = []
        for session, state in zip(sessions, states):
            if state is None:
                views.append(SessionView(session=session, status="unknown"))
            elif state.running:
                views.append(
                    SessionView(session=session, status="running", started_at=state.started_at)
                )
            else:
                self._purge_stale(session, state)
        return views

    async def stats(self) -> SystemStats:
        containers = await self._driver.list_by_label(
            self._config.label_key,
            self._config.label_value,
            include_stopped=False,
        )
        sessions = self._registry.all_live()
        return SystemStats(
            active_sessions=len(sessions),
            running_containers=len(containers),
            sessions=[
                {
                    "session_id": s.session_id,
                    "owner_id": s.owner_id,
                    "owner_name": s.owner_name,
                    "host_port": s.host_port,
                    "created_at": s.created_at.isoformat(),
                }
                for s in sessions
            ],
        )

    async def _probe(self, session: DesktopSession) -> ContainerState | None:
        """Inspect the session's container; None when the runtime can't be asked."""
        if not session.container_ref:
            return None
        try:
            return await self._driver.inspect(session.container_ref)
        except Exception as exc:
            # Runtime unreachable: trust the registry rather than purge
            self._log.warning(
                "session.probe_failed",
                session_id=session.session_id,
                error=str(exc),
            )
            return None

    def _purge_stale(self, session: DesktopSession, state: ContainerState) -> None:
        self._log.info(
            "session.reconcile.purged",
            session_id=session.session_id,
            container_id=session.container_ref,
            container_status=state.status.value,
        )
        if self._registry.get(session.session_id) is not session:
            return
        session.advance(LifecycleState.TERMINATING)
        self._kill_display(session)
        self._registry.remove(session.session_id)

    # Shutdown

    async def shutdown(self) -> None:
        """Tear everything down, including containers the registry lost track of."""
        self._shutting_down = True
        pending_creates = list(self._create_tasks)
        for task in pending_creates:
            task.cancel()
        if pending_creates:
            await asyncio.gather(*pending_creates, return_exceptions=True)

        sessions = self._registry.all_live()
        self._log.info("session.shutdown.start", sessions=len(sessions))

        pids = {s.aux_process_id for s in sessions if s.aux_process_id}
        pids.update(self._supervisor.tracked_pids())
        for pid in pids:
            self._terminate_pid(pid)
        self._clients.clear()

        results = await asyncio.gather(
            *(self._teardown(s, kill_display=False) for s in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, BaseException):
                self._log.warning(
                    "session.shutdown.teardown_failed",
                    session_id=session.session_id,
                    error=str(result),
                )
        await self.wait_for_teardowns()

        removed = await self.sweep()
        self._registry.clear()
        self._log.info("session.shutdown.complete", swept=removed)

    async def sweep(self) -> int:
        """Stop and remove every labelled container, regardless of registry state.

        Returns:
            Number of containers removed
        """
        try:
            containers = await self._driver.list_by_label(
                self._config.label_key,
                self._config.label_value,
                include_stopped=True,
            )
        except Exception as exc:
            self._log.error("session.sweep.list_failed", error=str(exc))
            return 0

        async def _sweep_one(container_id: str, running: bool) -> None:
            if running:
                try:
                    await self._driver.stop(
                        container_id,
                        grace_seconds=self._config.stop_grace_seconds,
                    )
                except Exception as exc:
                    self._log.warning("session.sweep.stop_failed", container_id=container_id, error=str(exc))
            await self._driver.remove(container_id, force=True)

        results = await asyncio.gather(
            *(_sweep_one(c.container_id, c.running) for c in containers),
            return_exceptions=True,
        )

        removed = 0
        for container, result in zip(containers, results):
            if isinstance(result, BaseException):
                self._log.warning(
                    "session.sweep.remove_failed",
                    container_id=container.container_id,
                    name=container.name,
                    error=str(result),
                )
            else:
                removed += 1
                self._log.info("session.sweep.removed", container_id=container.container_id, name=container.name)
        return removed

"""SessionRegistry - in-memory store of desktop sessions.

Two indices are maintained together on every mutation:
- session_id -> DesktopSession
- owner_id -> set of session_ids

Sessions still being provisioned are held separately as reservations: their
ports count as in use, but they are not reachable through either index until
``insert`` promotes them.

All methods are synchronous. Under the asyncio scheduler that makes every
operation atomic with respect to the others; interleaving only happens
between calls.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from deskgate.models.session import DesktopSession, LifecycleState

logger = structlog.get_logger()

RemovalListener = Callable[[DesktopSession], None]


class SessionRegistry:
    """Owns all DesktopSession records for the process."""

    def __init__(self) -> None:
        self._by_id: dict[str, DesktopSession] = {}
        self._by_owner: dict[str, set[str]] = {}
        self._reserved: dict[str, DesktopSession] = {}
        self._listeners: list[RemovalListener] = []
        self._log = logger.bind(component="registry")

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._by_id

    def add_removal_listener(self, listener: RemovalListener) -> None:
        """Register a callback invoked after a session leaves the registry."""
        self._listeners.append(listener)

    # Reservations (in-flight provisioning)

    def reserve(self, session: DesktopSession) -> None:
        """Hold a provisioning session's ports without exposing it."""
        if session.session_id in self._by_id or session.session_id in self._reserved:
            raise ValueError(f"Duplicate session id: {session.session_id}")
        self._reserved[session.session_id] = session

    def release(self, session_id: str) -> None:
        """Drop a reservation (provisioning failed). No-op if absent."""
        self._reserved.pop(session_id, None)

    def ports_in_use(self) -> set[int]:
        """Host and aux ports held by live sessions and reservations."""
        ports: set[int] = set()
        for session in (*self._by_id.values(), *self._reserved.values()):
            ports.add(session.host_port)
            ports.add(session.aux_port)
        return ports

    # Live sessions

    def insert(self, session: DesktopSession) -> None:
        """Add a session to both indices, promoting its reservation if any."""
        if session.session_id in self._by_id:
            raise ValueError(f"Duplicate session id: {session.session_id}")
        self._reserved.pop(session.session_id, None)
        self._by_id[session.session_id] = session
        self._by_owner.setdefault(session.owner_id, set()).add(session.session_id)

    def get(self, session_id: str) -> DesktopSession | None:
        return self._by_id.get(session_id)

    def get_by_owner(self, owner_id: str) -> set[str]:
        """Session ids owned by owner_id (a copy)."""
        return set(self._by_owner.get(owner_id, ()))

    def remove(self, session_id: str) -> DesktopSession | None:
        """Remove from both indices and mark terminated. No-op if absent.

        Returns:
            The removed session, or None if it was not registered
        """
        session = self._by_id.pop(session_id, None)
        if session is None:
            return None

        owned = self._by_owner.get(session.owner_id)
        if owned is not None:
            owned.discard(session_id)
            if not owned:
                del self._by_owner[session.owner_id]

        session.advance(LifecycleState.TERMINATED)
        self._notify(session)
        return session

    def all_live(self) -> list[DesktopSession]:
        return list(self._by_id.values())

    def clear(self) -> None:
        """Drop every session and reservation."""
        removed = list(self._by_id.values())
        self._by_id.clear()
        self._by_owner.clear()
        self._reserved.clear()
        for session in removed:
            session.advance(LifecycleState.TERMINATED)
            self._notify(session)

    def _notify(self, session: DesktopSession) -> None:
        for listener in self._listeners:
            try:
                listener(session)
            except Exception as exc:
                self._log.warning(
                    "registry.listener_failed",
                    session_id=session.session_id,
                    error=str(exc),
                )

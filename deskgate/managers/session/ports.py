"""Host port allocation for desktop sessions."""

from __future__ import annotations

from collections.abc import Iterable

from deskgate.models.session import aux_port_for


def allocate_port(in_use: Iterable[int], base: int) -> int:
    """Return the smallest port >= base that is not in use.

    The caller must reserve the returned port before its next suspension
    point; this function only reads the snapshot it is given.
    """
    used = set(in_use)
    port = base
    while port in used:
        port += 1
    return port


def allocate_session_port(in_use: Iterable[int], base: int) -> int:
    """Return the smallest free host port whose derived aux port is also free.

    A session at host port ``p`` uses display index ``p - base`` and so
    also binds ``aux_port_for(p - base)``. Both must be absent from in_use.
    """
    used = set(in_use)
    port = allocate_port(used, base)
    while aux_port_for(port - base) in used:
        port = allocate_port(used, port + 1)
    return port

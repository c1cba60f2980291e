"""Tunnel path helpers.

Tunnel URLs look like ``/<prefix>/<session_id>/<rest>``; the backend sees
``/<rest>`` (or ``/`` when rest is empty).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def tunnel_root(prefix: str, session_id: str) -> str:
    return f"/{prefix.strip('/')}/{session_id}"


def rewrite_path(path: str, prefix: str, session_id: str) -> str:
    """Strip the tunnel root from path.

    >>> rewrite_path("/proxy/sess-1/vnc.html", "proxy", "sess-1")
    '/vnc.html'
    >>> rewrite_path("/proxy/sess-1", "proxy", "sess-1")
    '/'
    """
    root = tunnel_root(prefix, session_id)
    if path == root:
        return "/"
    if not path.startswith(root + "/"):
        raise ValueError(f"Not a tunnel path for {session_id}: {path}")
    return path[len(root):]


def upstream_path(scope: Mapping[str, Any], prefix: str, session_id: str) -> str:
    """Backend path for an ASGI request, percent-encoding left intact.

    Uses ``raw_path`` so ``%2F`` or ``%3F`` in the sub-path reach the
    backend unchanged. Falls back to the decoded path when the server does
    not provide ``raw_path`` or the encoded root differs from the routed one.
    """
    raw = scope.get("raw_path")
    if raw:
        path = raw.split(b"?", 1)[0].decode("latin-1")
        root = tunnel_root(prefix, session_id)
        if path == root or path.startswith(root + "/"):
            return rewrite_path(path, prefix, session_id)
    return rewrite_path(scope["path"], prefix, session_id)

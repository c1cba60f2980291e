"""PrincipalStore - authenticated principals behind session cookies.

The identity layer (OAuth login, out of scope here) calls ``issue`` once a
user has logged in and sets the returned cookie on the response. Everything
else only ever resolves cookies back to principals.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

import structlog

from deskgate.security.cookies import sign_cookie, unsign_cookie

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class Principal:
    """An authenticated user."""

    id: str
    name: str
    email: str | None = None


class PrincipalStore:
    """In-memory map of principal-session id -> Principal."""

    def __init__(self, secret: str) -> None:
        self._secret = secret
        self._principals: dict[str, Principal] = {}
        self._log = logger.bind(component="principals")

    def __len__(self) -> int:
        return len(self._principals)

    def issue(self, principal: Principal) -> tuple[str, str]:
        """Start a principal session.

        Returns:
            (principal session id, signed cookie value)
        """
        sid = secrets.token_urlsafe(24)
        self._principals[sid] = principal
        self._log.info("principal.issued", principal_id=principal.id)
        return sid, sign_cookie(sid, self._secret)

    def resolve(self, sid: str) -> Principal | None:
        return self._principals.get(sid)

    def revoke(self, sid: str) -> bool:
        return self._principals.pop(sid, None) is not None

    def verify_cookie(self, raw: str | None) -> str | None:
        """Principal session id carried by a correctly signed cookie."""
        return unsign_cookie(raw, self._secret)

    def resolve_cookie(self, raw: str | None) -> Principal | None:
        sid = self.verify_cookie(raw)
        if sid is None:
            return None
        return self.resolve(sid)

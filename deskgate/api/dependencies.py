"""FastAPI dependencies.

Components live on ``app.state`` (built in the application lifespan); these
helpers fetch them and resolve the calling principal from its cookie.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from deskgate.config import Settings
from deskgate.errors import ForbiddenError, UnauthorizedError
from deskgate.managers.session import SessionOrchestrator
from deskgate.router.tunnel import TunnelGateway
from deskgate.security import Principal, PrincipalStore


def get_settings_dep(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings


def get_orchestrator(conn: HTTPConnection) -> SessionOrchestrator:
    return conn.app.state.orchestrator


def get_gateway(conn: HTTPConnection) -> TunnelGateway:
    return conn.app.state.gateway


def get_principals(conn: HTTPConnection) -> PrincipalStore:
    return conn.app.state.principals


SettingsDep = Annotated[Settings, Depends(get_settings_dep)]
OrchestratorDep = Annotated[SessionOrchestrator, Depends(get_orchestrator)]
GatewayDep = Annotated[TunnelGateway, Depends(get_gateway)]
PrincipalStoreDep = Annotated[PrincipalStore, Depends(get_principals)]


def get_principal(
    conn: HTTPConnection,
    settings: SettingsDep,
    principals: PrincipalStoreDep,
) -> Principal:
    """Resolve the logged-in principal from the signed session cookie.

    Raises:
        UnauthorizedError: Missing, tampered or unknown cookie
    """
    raw = conn.cookies.get(settings.security.cookie_name)
    if not raw:
        raise UnauthorizedError("Authentication required")
    principal = principals.resolve_cookie(raw)
    if principal is None:
        raise UnauthorizedError("Invalid or expired session")
    return principal


PrincipalDep = Annotated[Principal, Depends(get_principal)]


def get_admin(principal: PrincipalDep, settings: SettingsDep) -> Principal:
    if not settings.is_admin(principal.id, principal.email):
        raise ForbiddenError("Admin access required")
    return principal


AdminDep = Annotated[Principal, Depends(get_admin)]

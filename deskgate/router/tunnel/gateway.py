"""TunnelGateway - authenticated routing of browser traffic to sessions.

Routing targets come only from the session registry. Every request is
checked in the same order:

1. signed principal cookie present, valid and known (401)
2. session exists (404)
3. principal owns the session (403)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import structlog
from fastapi import Request, WebSocket
from fastapi.responses import Response

from deskgate.errors import ForbiddenError, NotFoundError, UnauthorizedError
from deskgate.router.tunnel.http_proxy import SessionProxy
from deskgate.router.tunnel.paths import upstream_path
from deskgate.router.tunnel.proxy_pool import ProxyPool
from deskgate.router.tunnel.websocket_relay import WebSocketRelay, deny

if TYPE_CHECKING:
    from deskgate.config import GatewayConfig, SecurityConfig
    from deskgate.managers.session.registry import SessionRegistry
    from deskgate.models.session import DesktopSession
    from deskgate.security.principals import Principal, PrincipalStore

logger = structlog.get_logger()


class TunnelGateway:
    """HTTP proxy and WebSocket relay for /<prefix>/<session_id>/..."""

    def __init__(
        self,
        *,
        registry: "SessionRegistry",
        principals: "PrincipalStore",
        config: "GatewayConfig",
        security: "SecurityConfig",
        relay: WebSocketRelay | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry = registry
        self._principals = principals
        self._config = config
        self._security = security
        self._relay = relay or WebSocketRelay(open_timeout=config.connect_timeout_seconds)
        self._transport = transport
        self._closing: set[asyncio.Task] = set()
        self._pool: ProxyPool[SessionProxy] = ProxyPool(
            max_size=config.proxy_cache_size,
            on_evict=self._schedule_close,
        )
        self._log = logger.bind(gateway="tunnel")

        registry.add_removal_listener(self._on_session_removed)

    @property
    def prefix(self) -> str:
        return self._config.prefix

    @property
    def pool(self) -> ProxyPool[SessionProxy]:
        return self._pool

    # Authorization

    def authorize(self, cookie: str | None, session_id: str) -> tuple["Principal", "DesktopSession"]:
        """Resolve the principal and the session it may reach.

        Raises:
            UnauthorizedError: Missing, tampered or unknown cookie
            NotFoundError: No such session
            ForbiddenError: Session owned by someone else
        """
        if not cookie:
            raise UnauthorizedError("Missing session cookie")
        principal = self._principals.resolve_cookie(cookie)
        if principal is None:
            raise UnauthorizedError("Invalid session cookie")

        session = self._registry.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        if session.owner_id != principal.id:
            raise ForbiddenError("Session belongs to another user")
        return principal, session

    # HTTP

    def proxy_for(self, session: "DesktopSession") -> SessionProxy:
        return self._pool.get_or_create(
            session.session_id,
            lambda: SessionProxy(
                session.session_id,
                session.host_port,
                timeout=self._config.request_timeout_seconds,
                connect_timeout=self._config.connect_timeout_seconds,
                transport=self._transport,
            ),
        )

    async def forward_http(self, request: Request, session_id: str) -> Response:
        _, session = self.authorize(request.cookies.get(self._security.cookie_name), session_id)
        path = upstream_path(request.scope, self.prefix, session_id)
        return await self.proxy_for(session).forward(request, path)

    # WebSocket

    async def relay_websocket(self, websocket: WebSocket, session_id: str) -> None:
        try:
            _, session = self.authorize(
                websocket.cookies.get(self._security.cookie_name),
                session_id,
            )
        except (UnauthorizedError, NotFoundError, ForbiddenError) as exc:
            self._log.info(
                "tunnel.ws.denied",
                session_id=session_id,
                status=exc.status_code,
                reason=exc.message,
            )
            await deny(websocket, exc.status_code)
            return

        path = upstream_path(websocket.scope, self.prefix, session_id)
        query = websocket.url.query
        target = f"ws://localhost:{session.host_port}{path}" + (f"?{query}" if query else "")
        await self._relay.run(websocket, target, session_id=session_id)

    # Cache lifecycle

    def _on_session_removed(self, session: "DesktopSession") -> None:
        if self._pool.discard(session.session_id) is not None:
            self._log.debug("tunnel.proxy.evicted", session_id=session.session_id)

    def _schedule_close(self, proxy: SessionProxy) -> None:
        try:
            task = asyncio.get_running_loop().create_task(proxy.aclose())
        except RuntimeError:
            self._log.warning("tunnel.proxy.close_skipped", session_id=proxy.session_id)
            return
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def aclose(self) -> None:
        proxies = self._pool.drain()
        await asyncio.gather(*(p.aclose(wait_idle=False) for p in proxies), return_exceptions=True)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

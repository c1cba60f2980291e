"""WebSocketRelay - splice a client WebSocket onto a session's backend.

The client side is the ASGI WebSocket accepted by FastAPI; the backend side
is a ``websockets`` client connection to ``ws://localhost:<host_port>``.
The backend handshake happens first so the client can be accepted with the
sub-protocol the backend actually chose. After that, two copy loops move
text and binary messages unchanged until either side goes away.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from http import HTTPStatus
from typing import Any

import structlog
from fastapi import WebSocket, status
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketDisconnect, WebSocketState
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = structlog.get_logger()

# Headers owned by each side's own handshake; never replayed across
HANDSHAKE_HEADERS = frozenset(
    {
        "host",
        "connection",
        "upgrade",
        "origin",
        "user-agent",
        "content-length",
        "transfer-encoding",
        "sec-websocket-key",
        "sec-websocket-version",
        "sec-websocket-extensions",
        "sec-websocket-protocol",
        "sec-websocket-accept",
    }
)

# Close codes that may not be sent in a close frame
_RESERVED_CLOSE_CODES = frozenset({1005, 1006, 1015})

BackendConnector = Callable[..., Awaitable[Any]]


async def connect_backend(
    uri: str,
    *,
    subprotocols: Sequence[str] | None,
    headers: list[tuple[str, str]],
    origin: str | None,
    open_timeout: float,
):
    """Open the backend connection (no compression, no size limit)."""
    return await connect(
        uri,
        subprotocols=subprotocols,
        additional_headers=headers,
        origin=origin,
        compression=None,
        max_size=None,
        open_timeout=open_timeout,
    )


async def deny(websocket: WebSocket, status_code: int, reason: str | None = None) -> None:
    """Reject a WebSocket before accept with an HTTP status.

    Falls back to a policy-violation close when the server does not
    support the WebSocket denial response extension.
    """
    reason = reason or HTTPStatus(status_code).phrase
    if "websocket.http.response" in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(PlainTextResponse(reason, status_code=status_code))
    else:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


def replayable_headers(websocket: WebSocket) -> list[tuple[str, str]]:
    return [
        (name, value)
        for name, value in websocket.headers.items()
        if name.lower() not in HANDSHAKE_HEADERS
    ]


class WebSocketRelay:
    """Bidirectional message relay between a client and a backend WebSocket."""

    def __init__(
        self,
        *,
        open_timeout: float = 10.0,
        connector: BackendConnector = connect_backend,
    ) -> None:
        self._open_timeout = open_timeout
        self._connector = connector
        self._log = logger.bind(gateway="tunnel")

    async def run(self, websocket: WebSocket, target_uri: str, *, session_id: str) -> None:
        log = self._log.bind(session_id=session_id, target=target_uri)
        requested = list(websocket.scope.get("subprotocols") or [])

        try:
            backend = await self._connector(
                target_uri,
                subprotocols=requested or None,
                headers=replayable_headers(websocket),
                origin=websocket.headers.get("origin"),
                open_timeout=self._open_timeout,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            log.warning("tunnel.ws.backend_unreachable", error=str(exc) or type(exc).__name__)
            await deny(websocket, status.HTTP_502_BAD_GATEWAY)
            return

        try:
            await websocket.accept(
                subprotocol=backend.subprotocol,
                headers=[
                    (name.lower().encode("latin-1"), value.encode("latin-1"))
                    for name, value in backend.response.headers.raw_items()
                    if name.lower() not in HANDSHAKE_HEADERS
                ],
            )
            log.info("tunnel.ws.opened", subprotocol=backend.subprotocol)
            await self._pump(websocket, backend, log)
        finally:
            await backend.close()
            log.info("tunnel.ws.closed", close_code=backend.close_code)

    async def _pump(self, websocket: WebSocket, backend: Any, log: Any) -> None:
        async def client_to_backend() -> None:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return
                if message.get("bytes") is not None:
                    await backend.send(message["bytes"])
                elif message.get("text") is not None:
                    await backend.send(message["text"])

        async def backend_to_client() -> None:
            async for data in backend:
                if isinstance(data, bytes):
                    await websocket.send_bytes(data)
                else:
                    await websocket.send_text(data)

        tasks = {
            asyncio.create_task(client_to_backend(), name="ws-client-to-backend"),
            asyncio.create_task(backend_to_client(), name="ws-backend-to-client"),
        }
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, (ConnectionClosed, WebSocketDisconnect)):
                log.warning("tunnel.ws.relay_error", error=str(exc), direction=task.get_name())

        if (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        ):
            code = backend.close_code
            if code is None or code in _RESERVED_CLOSE_CODES:
                code = status.WS_1000_NORMAL_CLOSURE
            try:
                await websocket.close(code=code)
            except RuntimeError as exc:
                log.debug("tunnel.ws.client_close_failed", error=str(exc))

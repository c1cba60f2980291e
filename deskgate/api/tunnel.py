"""Tunnel routes, mounted under /<gateway.prefix>."""

from __future__ import annotations

from fastapi import APIRouter, Request, WebSocket
from fastapi.responses import Response

from deskgate.api.dependencies import GatewayDep

router = APIRouter()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/{session_id}", methods=PROXY_METHODS, include_in_schema=False)
@router.api_route("/{session_id}/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_http(request: Request, session_id: str, gateway: GatewayDep) -> Response:
    return await gateway.forward_http(request, session_id)


@router.websocket("/{session_id}")
@router.websocket("/{session_id}/{path:path}")
async def proxy_websocket(websocket: WebSocket, session_id: str, gateway: GatewayDep) -> None:
    await gateway.relay_websocket(websocket, session_id)

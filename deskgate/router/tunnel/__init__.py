"""Tunnel gateway: path-rewriting HTTP proxy and WebSocket relay."""

from deskgate.router.tunnel.gateway import TunnelGateway
from deskgate.router.tunnel.http_proxy import SessionProxy
from deskgate.router.tunnel.paths import rewrite_path, tunnel_root, upstream_path
from deskgate.router.tunnel.proxy_pool import ProxyPool
from deskgate.router.tunnel.websocket_relay import WebSocketRelay

__all__ = [
    "ProxyPool",
    "SessionProxy",
    "TunnelGateway",
    "WebSocketRelay",
    "rewrite_path",
    "tunnel_root",
    "upstream_path",
]

"""SessionProxy - streaming HTTP forwarder for one session.

Each proxy owns an httpx.AsyncClient bound to the session's host port.
Request and response bodies are streamed, never buffered.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable

import httpx
import structlog
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

logger = structlog.get_logger()

# RFC 7230 section 6.1, plus Host (set by the client for the upstream)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "host",
    }
)


def filter_headers(items: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop hop-by-hop headers, including any named in Connection."""
    items = list(items)
    dropped = set(HOP_BY_HOP_HEADERS)
    for name, value in items:
        if name.lower() == "connection":
            dropped.update(token.strip().lower() for token in value.split(",") if token.strip())
    return [(name, value) for name, value in items if name.lower() not in dropped]


class SessionProxy:
    """Forwards HTTP requests to ``http://localhost:<host_port>``.

    Responses still streaming are counted; ``aclose`` waits for them so an
    evicted proxy never cuts off a body mid-transfer.
    """

    def __init__(
        self,
        session_id: str,
        host_port: int,
        *,
        timeout: float = 60.0,
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_id = session_id
        self.host_port = host_port
        self._client = httpx.AsyncClient(
            base_url=f"http://localhost:{host_port}",
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
            follow_redirects=False,
        )
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_timeout = timeout
        self._log = logger.bind(gateway="tunnel", session_id=session_id)

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def forward(self, request: Request, path: str) -> Response:
        """Send request upstream at path and stream the answer back.

        Backend failures become a 502 JSON response.
        """
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
        upstream = self._client.build_request(
            request.method,
            f"{path}?{request.url.query}" if request.url.query else path,
            headers=filter_headers(request.headers.items()),
            content=request.stream() if has_body else None,
        )

        self._acquire()
        try:
            response = await self._client.send(upstream, stream=True)
        except httpx.HTTPError as exc:
            self._release()
            self._log.warning("tunnel.http.backend_error", path=path, error=str(exc))
            return JSONResponse(
                status_code=502,
                content={"error": "Bad Gateway", "details": str(exc) or type(exc).__name__},
            )
        except BaseException:
            self._release()
            raise

        self._log.debug(
            "tunnel.http.forwarded",
            method=request.method,
            path=path,
            status=response.status_code,
        )
        streaming = StreamingResponse(self._relay_body(response), status_code=response.status_code)
        # Raw list keeps repeated headers (Set-Cookie) intact
        streaming.raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in filter_headers(response.headers.multi_items())
        ]
        return streaming

    def _acquire(self) -> None:
        self._in_flight += 1
        self._idle.clear()

    def _release(self) -> None:
        self._in_flight -= 1
        if self._in_flight == 0:
            self._idle.set()

    async def _relay_body(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        finally:
            await response.aclose()
            self._release()

    async def aclose(self, *, wait_idle: bool = True) -> None:
        """Close the client, by default after in-flight responses finish."""
        if wait_idle and not self._idle.is_set():
            try:
                await asyncio.wait_for(self._idle.wait(), self._drain_timeout)
            except TimeoutError:
                self._log.warning("tunnel.proxy.drain_timeout", in_flight=self._in_flight)
        await self._client.aclose()

import asyncio
import logging
from typing import Optional

import anyio
import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import StreamingResponse
from starlette.websockets import WebSocket, WebSocketState
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from authgate.core.config import UPSTREAM_BASE_URL, UPSTREAM_WS_URL, UPSTREAM_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# The websockets client writes its own handshake headers.
WS_HANDSHAKE_HEADERS = HOP_BY_HOP_HEADERS | {
    "host",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
    "user-agent",
}


class UpstreamUnavailable(RuntimeError):
    """No connection to the upstream could be established."""


class UpstreamError(RuntimeError):
    """The upstream failed after the connection was attempted."""


def _target(path: str, query: str) -> str:
    return path + (f"?{query}" if query else "")


class UpstreamProxy:
    """Forwards admitted HTTP requests and WebSocket upgrades to one upstream."""

    def __init__(self, base_url: str, ws_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.ws_url = ws_url
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                follow_redirects=False,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ HTTP
    async def forward_http(self, request: Request) -> StreamingResponse:
        """Relay the request upstream and stream the upstream response back.

        Raises UpstreamUnavailable when the connection cannot be opened and
        UpstreamError for any other transport failure.
        """
        headers = [
            (key, value)
            for key, value in request.headers.items()
            if key not in HOP_BY_HOP_HEADERS and key not in ("host", "content-length")
        ]
        body = await request.body()
        upstream_request = self.client.build_request(
            request.method,
            _target(request.url.path, request.url.query),
            headers=headers,
            content=body,
        )
        try:
            upstream_response = await self.client.send(upstream_request, stream=True)
        except httpx.ConnectError as e:
            raise UpstreamUnavailable(str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamError(str(e)) from e

        response = StreamingResponse(
            upstream_response.aiter_raw(),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
        response.raw_headers = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, value in upstream_response.headers.multi_items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        ]
        return response

    # ------------------------------------------------------------- WebSocket
    async def forward_websocket(self, websocket: WebSocket) -> None:
        """Open the upstream socket, then accept the client and pump frames.

        The client handshake is only accepted once the upstream handshake
        succeeded; on failure the client handshake is closed instead.
        """
        url = self.ws_url + _target(websocket.url.path, websocket.url.query)
        headers = [
            (key, value)
            for key, value in websocket.headers.items()
            if key not in WS_HANDSHAKE_HEADERS
        ]
        subprotocols = websocket.scope.get("subprotocols") or None

        try:
            remote = await connect(
                url,
                additional_headers=headers,
                subprotocols=subprotocols,
                user_agent_header=websocket.headers.get("user-agent"),
                open_timeout=self.timeout,
                max_size=None,
            )
        except ConnectionRefusedError as e:
            logger.warning(f"Upstream refused WebSocket connection for {websocket.url.path}: {e}")
            await websocket.close(code=1013)
            return
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.error(f"WebSocket upstream error for {websocket.url.path}: {e}")
            await websocket.close(code=1011)
            return

        async with remote:
            await websocket.accept(subprotocol=remote.subprotocol)
            await _pump(websocket, remote)


def _relay_close_code(code: Optional[int]) -> int:
    # 1005, 1006 and 1015 are reserved and must not be sent in a close frame.
    if code is None or code in (1005, 1006, 1015):
        return 1000
    return code


async def _client_to_upstream(websocket: WebSocket, remote) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            if message.get("text") is not None:
                await remote.send(message["text"])
            elif message.get("bytes") is not None:
                await remote.send(message["bytes"])
    except ConnectionClosed:
        return


async def _upstream_to_client(websocket: WebSocket, remote) -> None:
    try:
        async for message in remote:
            if isinstance(message, str):
                await websocket.send_text(message)
            else:
                await websocket.send_bytes(message)
    except ConnectionClosed:
        return


async def _pump(websocket: WebSocket, remote) -> None:
    """Relay frames both ways until either side goes away, then close the other."""

    async def relay(direction) -> None:
        await direction(websocket, remote)
        task_group.cancel_scope.cancel()

    async with anyio.create_task_group() as task_group:
        task_group.start_soon(relay, _client_to_upstream)
        task_group.start_soon(relay, _upstream_to_client)

    await remote.close()
    if (websocket.client_state != WebSocketState.DISCONNECTED
            and websocket.application_state != WebSocketState.DISCONNECTED):
        await websocket.close(code=_relay_close_code(remote.close_code))


upstream = UpstreamProxy(UPSTREAM_BASE_URL, UPSTREAM_WS_URL, timeout=UPSTREAM_TIMEOUT_SECONDS)

import logging
from fastapi import APIRouter, Request, WebSocket
from starlette.websockets import WebSocketState

from authgate.core.config import SESSION_COOKIE_NAME
from authgate.core.proxy import upstream, UpstreamUnavailable, UpstreamError
from authgate.core.secret_store import secret_store
from authgate.core.session import session_codec, session_from_cookie_header
from authgate.templates import get_starting_html, get_error_html

logger = logging.getLogger(__name__)
router = APIRouter()


async def proxy_http(request: Request):
    """Forward a request already admitted by the access gate, whatever its method."""
    try:
        return await upstream.forward_http(request)
    except UpstreamUnavailable as e:
        logger.info(f"Upstream not accepting connections yet: {e}")
        return get_starting_html()
    except UpstreamError as e:
        logger.error(f"Proxy error for {request.method} {request.url.path}: {e}")
        return get_error_html("Bad Gateway", status_code=502)


# An empty method set makes Starlette match every method, including WebDAV
# verbs and other extension methods the upstream may serve.
router.add_route("/{path:path}", proxy_http, methods=[], include_in_schema=False)


@router.websocket("/{path:path}")
async def proxy_websocket(websocket: WebSocket, path: str):
    """Authenticate a WebSocket upgrade from its raw handshake, then relay it.

    HTTP middleware does not run for upgrades, so the session cookie is
    decoded here from the raw Cookie header. A rejected handshake is closed
    before it is accepted and before any upstream connection is opened.
    """
    session = session_from_cookie_header(
        websocket.headers.get("cookie"), session_codec, SESSION_COOKIE_NAME
    )
    if session is None or not session.authenticated or not secret_store.is_enrolled():
        client = websocket.client.host if websocket.client else "unknown"
        logger.warning(f"Rejected unauthenticated WebSocket upgrade to /{path} from {client}")
        await websocket.close(code=1008)
        return

    try:
        await upstream.forward_websocket(websocket)
    except Exception as e:
        logger.error(f"WebSocket proxy error for /{path}: {e}")
        if (websocket.application_state != WebSocketState.DISCONNECTED
                and websocket.client_state != WebSocketState.DISCONNECTED):
            await websocket.close(code=1011)

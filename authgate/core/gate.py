import enum
import logging
from typing import Optional
from urllib.parse import urlsplit

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from authgate.core.secret_store import EnrollmentRecord, secret_store

logger = logging.getLogger(__name__)

SETUP_PATH = "/auth/setup"
LOGIN_PATH = "/auth/login"
LOGOUT_PATH = "/auth/logout"
HEALTH_PATH = "/healthz"

# Only the exact method/path pairs the auth and health routers serve skip the
# gate. Any other method on these paths falls through to the proxy route.
EXEMPT_ROUTES = frozenset({
    ("GET", HEALTH_PATH),
    ("GET", SETUP_PATH),
    ("POST", SETUP_PATH),
    ("GET", LOGIN_PATH),
    ("POST", LOGIN_PATH),
    ("GET", LOGOUT_PATH),
})


class EnrollmentState(enum.Enum):
    NOT_ENROLLED = "not_enrolled"
    ENROLLED_LOGGED_OUT = "enrolled_logged_out"
    ENROLLED_LOGGED_IN = "enrolled_logged_in"


def current_state(record: Optional[EnrollmentRecord], session: dict) -> EnrollmentState:
    """Derive the enrollment/login state; nothing about it is stored."""
    if record is None or not record.enrolled:
        return EnrollmentState.NOT_ENROLLED
    if session.get("authenticated") is True:
        return EnrollmentState.ENROLLED_LOGGED_IN
    return EnrollmentState.ENROLLED_LOGGED_OUT


def is_exempt(method: str, path: str) -> bool:
    return (method.upper(), path) in EXEMPT_ROUTES


def safe_return_to(target: Optional[str]) -> str:
    """Only local absolute paths are valid redirect targets after login."""
    if not target or not target.startswith("/") or target.startswith("//") or "\\" in target:
        return "/"
    parts = urlsplit(target)
    if parts.scheme or parts.netloc:
        return "/"
    return target


def original_url(request: Request) -> str:
    query = request.url.query
    return request.url.path + (f"?{query}" if query else "")


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Guard every non-auth HTTP request before it reaches the proxy.

    Runs for ``http`` scopes only; WebSocket upgrades are authenticated in
    the upgrade handler itself.
    """

    async def dispatch(self, request: Request, call_next):
        if is_exempt(request.method, request.url.path):
            return await call_next(request)

        state = current_state(secret_store.load(), request.session)
        if state is EnrollmentState.NOT_ENROLLED:
            return RedirectResponse(SETUP_PATH, status_code=302)
        if state is EnrollmentState.ENROLLED_LOGGED_IN:
            return await call_next(request)

        request.session["returnTo"] = original_url(request)
        logger.debug(f"Unauthenticated request to {request.url.path}, redirecting to login")
        return RedirectResponse(LOGIN_PATH, status_code=302)

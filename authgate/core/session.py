"""Signed session tokens carried in the gateway cookie.

The codec works on plain strings so the same decode runs from the HTTP
middleware (cookies already parsed by Starlette) and from a WebSocket
handshake, where only the raw ``Cookie`` header is available.
"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer
from itsdangerous.encoding import base64_decode, base64_encode
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection, cookie_parser

from authgate.core.config import SESSION_SECRET, SESSION_MAX_AGE_SECONDS, SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)


@dataclass
class Session:
    authenticated: bool = False
    return_to: Optional[str] = None

    def to_dict(self) -> dict:
        data = {}
        if self.authenticated:
            data["authenticated"] = True
        if self.return_to is not None:
            data["returnTo"] = self.return_to
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        authenticated = data.get("authenticated", False)
        return_to = data.get("returnTo")
        if not isinstance(authenticated, bool):
            raise ValueError("authenticated must be a boolean")
        if return_to is not None and not isinstance(return_to, str):
            raise ValueError("returnTo must be a string")
        return cls(authenticated=authenticated, return_to=return_to)


class SessionCodec:
    """Encode/decode a session as ``payload.timestamp.signature``.

    The signature is an HMAC-SHA256 over the payload and issue time.
    ``decode`` checks signature and age before looking at any field and
    returns ``None`` for anything it cannot fully trust.
    """

    def __init__(self, secret_key: str, max_age: int, salt: str = "authgate.session"):
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(
            secret_key,
            salt=salt,
            signer_kwargs={"digest_method": hashlib.sha256},
        )

    def encode(self, session: Session) -> str:
        return self._serializer.dumps(session.to_dict())

    def decode(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        if not _has_canonical_signature(token):
            logger.debug("Rejected session token: non-canonical signature")
            return None
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except BadData as e:
            logger.debug(f"Rejected session token: {e.__class__.__name__}")
            return None
        if not isinstance(data, dict):
            return None
        try:
            return Session.from_dict(data)
        except ValueError:
            return None


def _has_canonical_signature(token: str) -> bool:
    # Base64 decoding ignores the unused low bits of the last character, so
    # several spellings of one signature would verify. Only the one the
    # encoder produces is accepted.
    signature = token.rpartition(".")[2]
    try:
        return base64_encode(base64_decode(signature)) == signature.encode("utf-8")
    except BadData:
        return False


session_codec = SessionCodec(SESSION_SECRET, max_age=SESSION_MAX_AGE_SECONDS)


def session_from_cookie_header(
    raw_cookie: Optional[str],
    codec: Optional[SessionCodec] = None,
    cookie_name: str = SESSION_COOKIE_NAME,
) -> Optional[Session]:
    """Decode the session cookie straight from a raw ``Cookie`` header value."""
    if not raw_cookie:
        return None
    token = cookie_parser(raw_cookie).get(cookie_name)
    return (codec or session_codec).decode(token)


class SessionCookieMiddleware:
    """Load ``scope["session"]`` from the signed cookie for HTTP requests.

    The cookie is only (re)issued when the session changed during the
    request, so its max-age runs from the moment it was written.
    WebSocket scopes pass through untouched.
    """

    def __init__(self, app, codec: Optional[SessionCodec] = None, cookie_name: str = SESSION_COOKIE_NAME,
                 https_only: bool = False):
        self.app = app
        self.codec = codec or session_codec
        self.cookie_name = cookie_name
        self.security_flags = "httponly; samesite=lax"
        if https_only:
            self.security_flags += "; secure"

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        token = connection.cookies.get(self.cookie_name)
        session = self.codec.decode(token)
        initial = session.to_dict() if session else {}
        scope["session"] = dict(initial)
        stale_cookie = token is not None and session is None

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                current = scope["session"]
                if current != initial or stale_cookie:
                    headers = MutableHeaders(scope=message)
                    if current:
                        value = self.codec.encode(Session.from_dict(current))
                        max_age = f"Max-Age={self.codec.max_age}; "
                    else:
                        value = "null"
                        max_age = "expires=Thu, 01 Jan 1970 00:00:00 GMT; Max-Age=0; "
                    headers.append(
                        "Set-Cookie",
                        f"{self.cookie_name}={value}; path=/; {max_age}{self.security_flags}",
                    )
            await send(message)

        await self.app(scope, receive, send_wrapper)

import os
import secrets
import logging

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when the listen or upstream configuration is unusable."""


def getenv_multi(default: str, *names: str) -> str:
    """Return the first found environment value among provided names."""
    for name in names:
        val = os.getenv(name)
        if val is not None and val != "":
            return val
    return default


def _int_setting(default: str, *names: str) -> int:
    raw = getenv_multi(default, *names)
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{names[0]} must be an integer, got {raw!r}") from None


def _port_setting(default: str, *names: str) -> int:
    port = _int_setting(default, *names)
    if not 0 < port < 65536:
        raise ConfigurationError(f"{names[0]} must be a TCP port (1-65535), got {port}")
    return port


LOG_LEVEL = getenv_multi("INFO", "AUTHGATE_LOG_LEVEL", "LOG_LEVEL")
LISTEN_HOST = getenv_multi("0.0.0.0", "AUTHGATE_HOST")
LISTEN_PORT = _port_setting("8080", "AUTHGATE_PORT", "AUTH_PROXY_PORT")

UPSTREAM_HOST = getenv_multi("127.0.0.1", "AUTHGATE_UPSTREAM_HOST", "CODE_SERVER_HOST")
UPSTREAM_PORT = _port_setting("8081", "AUTHGATE_UPSTREAM_PORT", "CODE_SERVER_PORT")
UPSTREAM_TIMEOUT_SECONDS = _int_setting("30", "AUTHGATE_UPSTREAM_TIMEOUT")
if not UPSTREAM_HOST.strip():
    raise ConfigurationError("AUTHGATE_UPSTREAM_HOST must not be empty")

SESSION_SECRET = getenv_multi("", "AUTHGATE_SESSION_SECRET", "SESSION_SECRET")
if not SESSION_SECRET:
    # Sessions signed with a per-process key do not survive a restart.
    SESSION_SECRET = secrets.token_hex(32)
    logger.warning("AUTHGATE_SESSION_SECRET not set, using a random key for this process")

# Legacy SESSION_MAX_AGE is expressed in milliseconds.
_legacy_max_age_ms = getenv_multi("", "SESSION_MAX_AGE")
_default_max_age = str(int(_legacy_max_age_ms) // 1000) if _legacy_max_age_ms.isdigit() else str(30 * 24 * 60 * 60)
SESSION_MAX_AGE_SECONDS = _int_setting(_default_max_age, "AUTHGATE_SESSION_MAX_AGE")
SESSION_COOKIE_NAME = getenv_multi("authgate_session", "AUTHGATE_SESSION_COOKIE")

SECRET_FILE_PATH = getenv_multi(
    os.path.join(os.path.expanduser("~"), ".config", "authgate", "secret.json"),
    "AUTHGATE_SECRET_PATH",
    "TOTP_SECRET_PATH",
)
APP_NAME = getenv_multi("Code Server", "AUTHGATE_APP_NAME", "APP_NAME")
ACCOUNT_NAME = getenv_multi("admin", "AUTHGATE_ACCOUNT_NAME")

LOGIN_MAX_ATTEMPTS = _int_setting("5", "AUTHGATE_LOGIN_MAX_ATTEMPTS")
LOGIN_WINDOW_SECONDS = _int_setting("60", "AUTHGATE_LOGIN_WINDOW_SECONDS")

UPSTREAM_BASE_URL = f"http://{UPSTREAM_HOST}:{UPSTREAM_PORT}"
UPSTREAM_WS_URL = f"ws://{UPSTREAM_HOST}:{UPSTREAM_PORT}"

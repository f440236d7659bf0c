import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from authgate.core.config import LOG_LEVEL, UPSTREAM_BASE_URL, SESSION_COOKIE_NAME
from authgate.core.gate import AccessGateMiddleware
from authgate.core.proxy import upstream
from authgate.core.secret_store import secret_store
from authgate.core.session import SessionCookieMiddleware, session_codec
from authgate.routers import auth, health, proxy

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events: startup and shutdown."""
    logger.info(f"2FA gateway proxying to {UPSTREAM_BASE_URL} (enrollment: {secret_store.status()})")

    yield

    # uvicorn has stopped accepting connections and drained the open ones.
    logger.info("Shutting down, closing upstream client")
    await upstream.aclose()


app = FastAPI(
    title="authgate",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,  # Disable Swagger UI; every unknown path belongs to the upstream
    redoc_url=None,
    openapi_url=None,
)

# Last added runs first: the session must be loaded before the gate reads it.
app.add_middleware(AccessGateMiddleware)
app.add_middleware(SessionCookieMiddleware, codec=session_codec, cookie_name=SESSION_COOKIE_NAME)

# Include Routers (the proxy catch-all must come last)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(proxy.router)

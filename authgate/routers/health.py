from fastapi import APIRouter

from authgate.core.gate import HEALTH_PATH
from authgate.core.secret_store import secret_store

router = APIRouter()


@router.get(HEALTH_PATH, tags=["system"])
async def health_check():
    """Liveness check; always 200 and never gated."""
    return {"status": "ok", "enrollment": secret_store.status()}

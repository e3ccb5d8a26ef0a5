from fastapi import APIRouter
from ..config import settings

router = APIRouter(prefix=settings.API_PREFIX, tags=["core"])

@router.get("/health")
def api_health():
    return {"status": "ok", "scope": "api-v1"}

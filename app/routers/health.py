from fastapi import APIRouter

from app.core.settings import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"ok": True, "app": settings.APP_NAME}

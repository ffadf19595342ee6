from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "ok": True,
        "env": settings.APP_ENV,
        "llm_enabled": settings.LLM_ENABLED,
        "vision_model": settings.LLM_MODEL_VISION if settings.LLM_ENABLED else None,
    }

from datetime import datetime, timezone

from fastapi import APIRouter

from ..settings import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
	return {
		"status": "ok",
		"timestamp": datetime.now(timezone.utc).isoformat(),
		"llm_configured": bool(settings.gemini_api_key),
		"tts_providers": settings.tts_provider_names(),
	}

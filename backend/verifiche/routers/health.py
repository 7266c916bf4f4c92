from fastapi import APIRouter, Depends

from ..settings import settings
from ..state import AppState, get_app_state

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
	return {"status": "ok"}


@router.get("/info")
def info(state: AppState = Depends(get_app_state)):
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"app_id": state.app_id,
		"dashboard_generation": state.dashboard.generation,
	}

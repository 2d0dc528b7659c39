# app/health.py
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request):
    settings = request.app.state.settings
    return {"status": "ok", "service": settings.app_name, "mock_identity": settings.use_mock_data}

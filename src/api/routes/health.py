"""Health check endpoint — no auth required."""

from __future__ import annotations

from fastapi import APIRouter

from config.settings import get_settings
from src.api.models.schemas import HealthResponse
from src.core.constants import API_VERSION, SERVICE_NAME

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(
        service=SERVICE_NAME,
        version=API_VERSION,
        environment=get_settings().metering_env,
    )

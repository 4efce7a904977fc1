# lessonpay/api/config.py
from __future__ import annotations

from fastapi import APIRouter

from lessonpay.core.settings import settings
from lessonpay.schemas.api_models import ConfigResponse, HealthResponse

router = APIRouter(tags=["Config"])


@router.get("/config", response_model=ConfigResponse)
async def get_config():
    """
    Publishable key for the browser's payment element.

      curl -X GET http://localhost:4242/config
    """
    return ConfigResponse(key=settings.STRIPE_PUBLISHABLE_KEY)


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", paymentsBackend=settings.PAYMENTS_BACKEND)

"""Liveness endpoint; tenant-exempt and excluded from session tracking."""

from fastapi import APIRouter, Depends

from utils.config import GatewayConfig
from utils.context_utils import get_config

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(config: GatewayConfig = Depends(get_config)):
    return {
        "status": "healthy",
        "environment": config.environment,
        "bypass_auth_expected": config.bypass_auth_expected,
    }

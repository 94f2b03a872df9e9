from __future__ import annotations

from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter, Depends

from edge_api.core.config import Settings, get_settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def get_health(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    """Report the running version and whether the upstream token is set."""
    try:
        pkg_version = version("edge-voice")
    except PackageNotFoundError:  # pragma: no cover - depends on installation
        pkg_version = "unknown"

    token_configured = bool(settings.hf_token)
    return {
        "status": "ok" if token_configured else "degraded",
        "version": pkg_version,
        "time": datetime.now(timezone.utc).isoformat(),
        "model": settings.hf_model,
        "token_configured": token_configured,
    }

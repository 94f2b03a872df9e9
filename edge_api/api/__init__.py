from __future__ import annotations

from .routes_chat import router as chat_router
from .routes_health import router as health_router

__all__ = [
    "chat_router",
    "health_router",
]

"""
app/api/routers package marker.
"""

from app.api.routers.alerts import router as alerts_router
from app.api.routers.apl_sync import router as apl_sync_router
from app.api.routers.health import router as health_router

__all__ = [
    "alerts_router",
    "apl_sync_router",
    "health_router",
]

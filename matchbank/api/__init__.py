from matchbank.api.health import router as health_router
from matchbank.api.marketplace import router as marketplace_router
from matchbank.api.monitoring import router as monitoring_router
from matchbank.api.resolution import router as resolution_router

__all__ = [
    "health_router",
    "marketplace_router",
    "monitoring_router",
    "resolution_router",
]

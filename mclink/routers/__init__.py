from .health_routes import router as health_router
from .link_routes import router as link_router

__all__ = ["health_router", "link_router"]

# routers/__init__.py

from .coordinators import router as coordinators_router
from .health import router as health_router
from .users import router as users_router

__all__ = ["coordinators_router", "health_router", "users_router"]

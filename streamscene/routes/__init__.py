from .auth import router as auth_router
from .threads import router as threads_router

__all__ = [
    "auth_router",
    "threads_router",
]

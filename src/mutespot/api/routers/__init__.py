"""API routers."""

from mutespot.api.routers.enforcement import router as enforcement_router

__all__ = ["enforcement_router"]

# src/securechat/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .devices import router as devices_router
from .files import router as files_router
from .groups import router as groups_router
from .messages import router as messages_router
from .realtime import router as realtime_router
from .users import router as users_router

__all__ = [
    "auth_router",
    "devices_router",
    "files_router",
    "groups_router",
    "messages_router",
    "realtime_router",
    "users_router",
]

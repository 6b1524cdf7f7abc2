"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .dependencies import (
    AdminDep,
    AdminOrTreasurerDep,
    CurrentMember,
    CurrentMemberDep,
    SessionDep,
    authenticate_token,
    get_current_member,
    require_roles,
)
from .security import create_access_token, decode_token
from .tasks import dispatch_after_commit, drain_background_tasks, spawn_background

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentMember",
    "authenticate_token",
    "get_current_member",
    "require_roles",
    "CurrentMemberDep",
    "AdminDep",
    "AdminOrTreasurerDep",
    "SessionDep",
    # Security
    "create_access_token",
    "decode_token",
    # Background tasks
    "dispatch_after_commit",
    "drain_background_tasks",
    "spawn_background",
]

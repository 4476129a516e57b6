"""Database module for the auth core.

This module provides:
- SQLAlchemy async database connection
- User, avatar and session models
- The `Storage` collaborator used during login and registration
"""

from summits_auth.database.connection import Database
from summits_auth.database.models import (
    IMAGE_MEDIUM,
    IMAGE_SMALL,
    Base,
    SessionRecord,
    User,
    UserImage,
)
from summits_auth.database.storage import (
    Storage,
    StorageError,
    UserAlreadyExistsError,
)

__all__ = [
    # Connection
    "Database",
    # Models
    "Base",
    "User",
    "UserImage",
    "SessionRecord",
    "IMAGE_SMALL",
    "IMAGE_MEDIUM",
    # Storage
    "Storage",
    "StorageError",
    "UserAlreadyExistsError",
]

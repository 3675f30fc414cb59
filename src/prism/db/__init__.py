"""Database layer."""

from prism.db.engine import Database
from prism.db.models import Base, Notification, UserProfile

__all__ = [
    # Engine
    "Database",
    # Models
    "Base",
    "Notification",
    "UserProfile",
]

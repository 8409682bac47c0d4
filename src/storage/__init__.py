"""
Catalog persistence: table models and the store adapter.
"""

from .database import DatabaseManager, get_database_manager
from .models import Base, Episode, Show

__all__ = [
    "Base",
    "DatabaseManager",
    "Episode",
    "Show",
    "get_database_manager",
]

"""
HumIQ Work Sessions - Core Package
==================================

Settings, database plumbing, models, schemas and the work session engine.
"""

from humiq.core.config import settings
from humiq.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]

"""
Database Module
===============

Provides database session management and base model.
"""

from taskflow.db.base import Base
from taskflow.db.session import get_db, init_db, close_db, get_session_factory

__all__ = ["Base", "get_db", "init_db", "close_db", "get_session_factory"]

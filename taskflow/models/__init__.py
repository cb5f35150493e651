"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations and relationships.
"""

from taskflow.models.user import User
from taskflow.models.task import Task, TaskPriority, DEFAULT_DUE_TIME
from taskflow.models.push import NotificationLog, PushSubscription

__all__ = [
    # User
    "User",
    # Task
    "Task",
    "TaskPriority",
    "DEFAULT_DUE_TIME",
    # Push
    "PushSubscription",
    "NotificationLog",
]

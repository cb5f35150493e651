"""
Task Models
===========

SQLAlchemy model for dated tasks.
"""

from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskflow.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from taskflow.models.user import User


# =============================================================================
# Enums
# =============================================================================

class TaskPriority(str, Enum):
    """Task priority level."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


DEFAULT_DUE_TIME = "09:00"


# =============================================================================
# Models
# =============================================================================

class Task(Base, TimestampMixin):
    """
    Task model.

    ``due_date`` and ``due_time`` are wall-clock values without a zone;
    the owner's timezone turns them into an instant when reminders run.
    """

    __tablename__ = "tasks"

    # Primary Key (server-assigned, always positive)
    task_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Foreign Keys
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )

    # Task details
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    due_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
        default=DEFAULT_DUE_TIME,
    )
    completed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        SQLEnum(TaskPriority, name="taskpriority", create_constraint=True),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )

    # Relationships
    user: Mapped["User"] = relationship(
        "User",
        back_populates="tasks",
    )

    # Indexes
    __table_args__ = (
        Index("idx_task_user_due", "user_id", "due_date", "due_time"),
        Index("idx_task_open_due", "completed", "due_date"),
    )

    def __repr__(self) -> str:
        return f"<Task(task_id={self.task_id}, title={self.title[:30]})>"

    def to_api_dict(self) -> dict:
        """
        Serialize to the camelCase API format.

            task_id  → id
            due_date → dueDate
            due_time → dueTime
        """
        return {
            "id": self.task_id,
            "title": self.title,
            "description": self.description,
            "dueDate": self.due_date.isoformat(),
            "dueTime": self.due_time,
            "completed": self.completed,
            "priority": self.priority.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

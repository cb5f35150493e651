"""
User Model
==========

SQLAlchemy model for user accounts.

Accounts are created by the auth service; this service only reads them
and owns their tasks and push subscriptions.
"""

from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskflow.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from taskflow.models.push import PushSubscription
    from taskflow.models.task import Task


class User(Base, TimestampMixin):
    """
    User account model.
    """

    __tablename__ = "users"

    # Primary Key
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Account fields
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # IANA zone used to turn a task's wall-clock due time into an instant
    timezone: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        default="UTC",
    )

    # Relationships
    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="user",
        lazy="raise",
        cascade="all, delete-orphan",
    )
    push_subscriptions: Mapped[list["PushSubscription"]] = relationship(
        "PushSubscription",
        back_populates="user",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, email={self.email})>"

    def to_export_dict(self) -> dict:
        return {
            "id": str(self.user_id),
            "name": self.name,
            "email": self.email,
        }

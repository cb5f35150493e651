"""
Push Models
===========

Web Push subscriptions and the notification log that de-duplicates
reminder sends.
"""

from datetime import date
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskflow.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from taskflow.models.user import User


class PushSubscription(Base, TimestampMixin):
    """
    Browser push subscription.

    One row per endpoint; re-registering an endpoint moves it to the
    registering account.
    """

    __tablename__ = "push_subscriptions"

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    endpoint: Mapped[str] = mapped_column(
        Text,
        unique=True,
        nullable=False,
    )
    p256dh: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    auth: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    user: Mapped["User"] = relationship(
        "User",
        back_populates="push_subscriptions",
    )

    def __repr__(self) -> str:
        return f"<PushSubscription(subscription_id={self.subscription_id})>"

    def to_subscription_info(self) -> dict:
        """Shape expected by the Web Push transport."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class NotificationLog(Base, TimestampMixin):
    """
    Record of a reminder delivered to one subscription for one due instant.

    The unique constraint is the only guard against re-sending; it must
    live in the database so overlapping dispatcher runs cannot both log.
    """

    __tablename__ = "notification_logs"

    log_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.task_id", ondelete="CASCADE"),
        nullable=False,
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("push_subscriptions.subscription_id", ondelete="CASCADE"),
        nullable=False,
    )
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    due_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "task_id",
            "subscription_id",
            "due_date",
            "due_time",
            name="uq_notification_task_sub_due",
        ),
        Index("idx_notification_subscription", "subscription_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationLog(task_id={self.task_id}, "
            f"due={self.due_date} {self.due_time})>"
        )

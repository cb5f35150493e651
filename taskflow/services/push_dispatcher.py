"""
Push Dispatcher
===============

Cron-driven delivery of "task due" Web Push reminders.

Each run picks incomplete tasks whose due instant fell within the last
grace window and sends one notification per (task, subscription, due
instant). The notification log, guarded by a database unique constraint,
is what keeps later runs from sending again.

Delivery is send-then-log: if the process dies between a successful send
and the log insert, the next run sends that reminder a second time.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Optional, Sequence

from sqlalchemy import delete, exists, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskflow.config import settings
from taskflow.models.push import NotificationLog, PushSubscription
from taskflow.models.task import Task
from taskflow.models.user import User
from taskflow.services.web_push import PushDeliveryError, WebPushSender
from taskflow.utils.helpers import due_instant, resolve_timezone, utc_now

logger = logging.getLogger(__name__)


def build_reminder_payload(task: Task, click_url: Optional[str] = None) -> dict:
    """Notification content for one due task."""
    return {
        "title": f"Task Due: {task.title}",
        "body": f"Due now at {task.due_time} ({task.due_date.isoformat()})",
        "url": click_url or settings.PUSH_CLICK_URL,
    }


# =============================================================================
# Repository
# =============================================================================

class PushReminderRepository:
    """Database access used by the dispatcher."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def candidate_tasks(self, not_before: date) -> Sequence[Task]:
        """
        Incomplete tasks of users that have at least one subscription.

        *not_before* is a coarse date filter; the exact window check
        happens in the owner's timezone.
        """
        has_subscription = exists().where(PushSubscription.user_id == Task.user_id)
        stmt = (
            select(Task)
            .where(
                Task.completed.is_(False),
                Task.due_date >= not_before,
                has_subscription,
            )
            .options(
                selectinload(Task.user).selectinload(User.push_subscriptions),
            )
            .order_by(Task.due_date, Task.due_time, Task.task_id)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def is_logged(
        self,
        task_id: int,
        subscription_id: uuid.UUID,
        due_date: date,
        due_time: str,
    ) -> bool:
        stmt = select(NotificationLog.log_id).where(
            NotificationLog.task_id == task_id,
            NotificationLog.subscription_id == subscription_id,
            NotificationLog.due_date == due_date,
            NotificationLog.due_time == due_time,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def record_log(
        self,
        task_id: int,
        subscription_id: uuid.UUID,
        due_date: date,
        due_time: str,
    ) -> None:
        """Insert the log entry; a concurrent run's row wins silently."""
        stmt = (
            pg_insert(NotificationLog)
            .values(
                task_id=task_id,
                subscription_id=subscription_id,
                due_date=due_date,
                due_time=due_time,
            )
            .on_conflict_do_nothing(constraint="uq_notification_task_sub_due")
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def delete_subscription(self, subscription_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(PushSubscription).where(
                PushSubscription.subscription_id == subscription_id
            )
        )
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


# =============================================================================
# Dispatcher
# =============================================================================

@dataclass
class DispatchSummary:
    sent: int = 0
    removed_subscriptions: int = 0
    skipped: int = 0
    failed: int = 0
    removed_ids: set = field(default_factory=set)


@dataclass
class DueReminder:
    """
    Plain copy of a due task and its owner's subscriptions.

    Taken before any write, so a rollback that expires the loaded rows
    cannot break the rest of the run.
    """

    task_id: int
    due_date: date
    due_time: str
    payload: dict
    subscriptions: list = field(default_factory=list)

    @classmethod
    def from_task(cls, task: Task) -> "DueReminder":
        owner = task.user
        subscriptions = owner.push_subscriptions if owner is not None else []
        return cls(
            task_id=task.task_id,
            due_date=task.due_date,
            due_time=task.due_time,
            payload=build_reminder_payload(task),
            subscriptions=[
                (sub.subscription_id, sub.to_subscription_info())
                for sub in subscriptions
            ],
        )


class PushDispatcher:
    """Send due-task reminders to every subscription of the task owner."""

    def __init__(
        self,
        repository: PushReminderRepository,
        sender: WebPushSender,
        grace: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
        default_timezone: Optional[str] = None,
    ):
        self.repository = repository
        self.sender = sender
        self.grace = grace if grace is not None else timedelta(minutes=settings.PUSH_GRACE_MINUTES)
        self.clock = clock
        self.default_timezone = default_timezone or settings.DEFAULT_TIMEZONE

    def _owner_timezone(self, task: Task) -> tzinfo:
        owner = task.user
        return resolve_timezone(
            owner.timezone if owner is not None else None,
            fallback=self.default_timezone,
        )

    def is_due(self, task: Task, now: datetime) -> bool:
        """True when the due instant lies in ``[now - grace, now]``."""
        due = due_instant(task.due_date, task.due_time, self._owner_timezone(task))
        if due is None:
            return False
        return now - self.grace <= due <= now

    async def _record_outcome(
        self,
        reminder: DueReminder,
        subscription_id: uuid.UUID,
        outcome: Optional[BaseException],
        summary: DispatchSummary,
    ) -> None:
        if outcome is None:
            await self.repository.record_log(
                reminder.task_id,
                subscription_id,
                reminder.due_date,
                reminder.due_time,
            )
            summary.sent += 1
            return

        if isinstance(outcome, PushDeliveryError) and outcome.gone:
            logger.warning(
                "Removing expired push subscription %s (status %s)",
                subscription_id,
                outcome.status_code,
            )
            await self.repository.delete_subscription(subscription_id)
            summary.removed_subscriptions += 1
            summary.removed_ids.add(subscription_id)
            return

        logger.warning(
            "Push delivery failed for task %s: %s", reminder.task_id, outcome
        )
        summary.failed += 1

    async def run(self) -> dict:
        """
        Execute one dispatch pass.

        A database error while recording one outcome is rolled back and
        counted as failed; the rest of the batch still runs.

        Raises:
            PushNotConfiguredError: If VAPID credentials are missing

        Returns:
            Summary of the run
        """
        self.sender.ensure_configured()

        now = self.clock()
        # Widest zone offset is +14h, so a day of slack covers every owner
        not_before = (now - self.grace - timedelta(days=1)).date()
        tasks = await self.repository.candidate_tasks(not_before)
        reminders = [DueReminder.from_task(t) for t in tasks if self.is_due(t, now)]

        summary = DispatchSummary()
        for reminder in reminders:
            pending = []
            for subscription_id, info in reminder.subscriptions:
                if subscription_id in summary.removed_ids:
                    continue
                already_sent = await self.repository.is_logged(
                    reminder.task_id,
                    subscription_id,
                    reminder.due_date,
                    reminder.due_time,
                )
                if already_sent:
                    summary.skipped += 1
                    continue
                pending.append((subscription_id, info))

            if not pending:
                continue

            # Sends run concurrently; the session is only touched afterwards
            outcomes = await asyncio.gather(
                *(self.sender.send(info, reminder.payload) for _, info in pending),
                return_exceptions=True,
            )
            for (subscription_id, _), outcome in zip(pending, outcomes):
                try:
                    await self._record_outcome(reminder, subscription_id, outcome, summary)
                except SQLAlchemyError as e:
                    logger.warning(
                        "Could not record push outcome for task %s, subscription %s: %s",
                        reminder.task_id,
                        subscription_id,
                        e,
                    )
                    await self.repository.rollback()
                    summary.failed += 1

        logger.info(
            "Push reminders: sent=%d removed=%d skipped=%d failed=%d",
            summary.sent,
            summary.removed_subscriptions,
            summary.skipped,
            summary.failed,
        )
        return {
            "job": "push_reminders",
            "sent": summary.sent,
            "removed_subscriptions": summary.removed_subscriptions,
            "skipped": summary.skipped,
            "failed": summary.failed,
            "run_at": now.isoformat(),
        }

"""
Task Service
============

Business logic for task CRUD and account export/import.
"""

import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.models.task import Task
from taskflow.models.user import User
from taskflow.schemas.task import ImportedTask, TaskCreate
from taskflow.utils.helpers import utc_now


class TaskNotFoundError(Exception):
    """Raised when a task does not exist or belongs to another user."""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class TaskService:
    """Service for task operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_tasks(self, user_id: uuid.UUID) -> list[Task]:
        """All tasks of the user ordered by due date, due time, then creation."""
        stmt = (
            select(Task)
            .where(Task.user_id == user_id)
            .order_by(
                Task.due_date.asc(),
                Task.due_time.asc(),
                Task.created_at.asc(),
                Task.task_id.asc(),
            )
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_task_by_id(
        self,
        task_id: int,
        user_id: uuid.UUID,
    ) -> Optional[Task]:
        """Get task by ID ensuring it belongs to user."""
        stmt = select(Task).where(
            Task.task_id == task_id,
            Task.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_task(
        self,
        user_id: uuid.UUID,
        task_data: TaskCreate,
    ) -> Task:
        """Create a new task and assign its server identifier."""
        task = Task(
            user_id=user_id,
            title=task_data.title,
            description=task_data.description,
            due_date=task_data.due_date,
            due_time=task_data.due_time,
            priority=task_data.priority,
        )
        self.db.add(task)
        await self.db.flush()
        await self.db.refresh(task)
        return task

    async def update_task(
        self,
        task_id: int,
        user_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> Task:
        """
        Apply a partial change set.

        Raises:
            TaskNotFoundError: If the task is missing or not owned by the user
        """
        task = await self.get_task_by_id(task_id, user_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        for field, value in changes.items():
            setattr(task, field, value)

        await self.db.flush()
        await self.db.refresh(task)
        return task

    async def delete_task(self, task_id: int, user_id: uuid.UUID) -> None:
        """
        Delete a task.

        Raises:
            TaskNotFoundError: If the task is missing or not owned by the user
        """
        result = await self.db.execute(
            delete(Task)
            .where(Task.task_id == task_id, Task.user_id == user_id)
            .returning(Task.task_id)
        )
        if result.scalar_one_or_none() is None:
            raise TaskNotFoundError(task_id)

    # =========================================================================
    # Export / import
    # =========================================================================

    async def export_account(self, user: User) -> dict:
        """Snapshot of the account and all its tasks."""
        tasks = await self.list_tasks(user.user_id)
        return {
            "exportedAt": utc_now().isoformat(),
            "user": user.to_export_dict(),
            "tasks": [task.to_api_dict() for task in tasks],
        }

    async def import_tasks(
        self,
        user_id: uuid.UUID,
        items: Iterable[ImportedTask],
    ) -> list[Task]:
        """Create one task per imported entry, keeping its completion flag."""
        created: list[Task] = []
        for item in items:
            task = Task(
                user_id=user_id,
                title=item.title,
                description=item.description,
                due_date=item.due_date,
                due_time=item.due_time,
                priority=item.priority,
                completed=item.completed,
            )
            self.db.add(task)
            created.append(task)

        await self.db.flush()
        return created

"""
Tasks API Endpoints
===================

Task CRUD for the signed-in account.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.config import settings
from taskflow.core.errors import ErrorCodes, NotFoundError, ValidationError
from taskflow.core.rate_limit import create_rate_limit_dependency
from taskflow.db.session import get_db
from taskflow.dependencies import CurrentUser
from taskflow.schemas.task import (
    DeleteTaskResponse,
    SingleTaskResponse,
    TaskCreate,
    TaskListResponse,
    TaskResponse,
    TaskUpdate,
)
from taskflow.services.cache import CacheInvalidator, CacheKeys, CacheManager
from taskflow.services.task_service import TaskNotFoundError, TaskService

router = APIRouter()

write_rate_limit = Depends(create_rate_limit_dependency("write"))


def _task_not_found() -> NotFoundError:
    return NotFoundError(code=ErrorCodes.TASK_NOT_FOUND, message="Task not found.")


@router.get(
    "",
    response_model=TaskListResponse,
)
async def list_tasks(
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    List all tasks ordered by due date, due time, then creation.
    """
    user_id_str = str(current_user.user_id)

    cache_key = CacheKeys.task_list(user_id_str)
    cached = await CacheManager.get(cache_key)
    if cached is not None:
        return TaskListResponse(success=True, data=cached)

    task_service = TaskService(db)
    tasks = await task_service.list_tasks(current_user.user_id)
    data = [task.to_api_dict() for task in tasks]

    await CacheManager.set(cache_key, data, ttl=settings.TASKS_CACHE_TTL)

    return TaskListResponse(success=True, data=data)


@router.post(
    "",
    response_model=SingleTaskResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[write_rate_limit],
)
async def create_task(
    task_data: TaskCreate,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Create a new task.
    """
    task_service = TaskService(db)
    task = await task_service.create_task(
        user_id=current_user.user_id,
        task_data=task_data,
    )

    await CacheInvalidator.on_task_change(str(current_user.user_id))

    return SingleTaskResponse(
        success=True,
        data=TaskResponse(**task.to_api_dict()),
        message="Task created",
    )


@router.patch(
    "/{task_id}",
    response_model=SingleTaskResponse,
    dependencies=[write_rate_limit],
)
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Partially update a task.
    """
    changes = task_data.changes()
    if not changes:
        raise ValidationError(
            message="No valid fields provided.",
            code=ErrorCodes.TASK_NO_CHANGES,
        )

    task_service = TaskService(db)
    try:
        task = await task_service.update_task(task_id, current_user.user_id, changes)
    except TaskNotFoundError:
        raise _task_not_found()

    await CacheInvalidator.on_task_change(str(current_user.user_id))

    return SingleTaskResponse(
        success=True,
        data=TaskResponse(**task.to_api_dict()),
    )


@router.delete(
    "/{task_id}",
    response_model=DeleteTaskResponse,
    dependencies=[write_rate_limit],
)
async def delete_task(
    task_id: int,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Delete a task.
    """
    task_service = TaskService(db)
    try:
        await task_service.delete_task(task_id, current_user.user_id)
    except TaskNotFoundError:
        raise _task_not_found()

    await CacheInvalidator.on_task_change(str(current_user.user_id))

    return DeleteTaskResponse()

"""
User API Endpoints
==================

Account data export and import.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.rate_limit import create_rate_limit_dependency
from taskflow.db.session import get_db
from taskflow.dependencies import CurrentUser
from taskflow.schemas.task import ImportTasksRequest, ImportTasksResponse
from taskflow.services.cache import CacheInvalidator
from taskflow.services.task_service import TaskService
from taskflow.utils.helpers import utc_now

router = APIRouter()


@router.get("/export")
async def export_account(
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Download the account and all its tasks as a JSON attachment.
    """
    task_service = TaskService(db)
    document = await task_service.export_account(current_user)

    filename = f"taskflow-export-{utc_now().date().isoformat()}.json"
    return JSONResponse(
        content=document,
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "Cache-Control": "no-store",
        },
    )


@router.post(
    "/import",
    response_model=ImportTasksResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(create_rate_limit_dependency("write"))],
)
async def import_tasks(
    payload: ImportTasksRequest,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Recreate tasks from an export document's ``tasks`` array.
    """
    task_service = TaskService(db)
    created = await task_service.import_tasks(current_user.user_id, payload.tasks)

    await CacheInvalidator.on_task_change(str(current_user.user_id))

    return ImportTasksResponse(success=True, imported=len(created))

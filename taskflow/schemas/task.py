"""
Task Schemas
============

Pydantic schemas for task endpoints and account export/import.
"""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskflow.models.task import DEFAULT_DUE_TIME, TaskPriority
from taskflow.utils.validators import (
    normalize_description,
    validate_due_time,
    validate_title,
)


# =============================================================================
# Request Schemas
# =============================================================================

class TaskCreate(BaseModel):
    """Request schema for creating a task."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: Optional[str] = None
    due_date: date = Field(alias="dueDate")
    due_time: str = Field(default=DEFAULT_DUE_TIME, alias="dueTime")
    priority: TaskPriority = TaskPriority.MEDIUM

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return validate_title(v)

    @field_validator("description")
    @classmethod
    def _description(cls, v: Optional[str]) -> Optional[str]:
        return normalize_description(v)

    @field_validator("due_time")
    @classmethod
    def _due_time(cls, v: str) -> str:
        return validate_due_time(v)


class TaskUpdate(BaseModel):
    """
    Request schema for a partial task update.

    Only fields present in the request body are written; an explicit
    ``"description": null`` clears the description.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[date] = Field(None, alias="dueDate")
    due_time: Optional[str] = Field(None, alias="dueTime")
    priority: Optional[TaskPriority] = None
    completed: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def _title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Title cannot be empty.")
        return validate_title(v)

    @field_validator("description")
    @classmethod
    def _description(cls, v: Optional[str]) -> Optional[str]:
        return normalize_description(v)

    @field_validator("due_date")
    @classmethod
    def _due_date(cls, v: Optional[date]) -> date:
        if v is None:
            raise ValueError("Due date is required.")
        return v

    @field_validator("due_time")
    @classmethod
    def _due_time(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("Invalid due time value.")
        return validate_due_time(v)

    @field_validator("priority", "completed")
    @classmethod
    def _not_null(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Field cannot be null.")
        return v

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


class ImportedTask(TaskCreate):
    """A task entry inside an import payload (export format)."""

    completed: bool = False


class ImportTasksRequest(BaseModel):
    """
    Request schema for importing tasks.

    Accepts the ``tasks`` array of an export document; server identifiers
    and timestamps in the entries are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    tasks: list[ImportedTask] = Field(default_factory=list, max_length=5000)


# =============================================================================
# Response Schemas
# =============================================================================

class TaskResponse(BaseModel):
    """Task as returned by the API (camelCase)."""

    id: int
    title: str
    description: Optional[str] = None
    dueDate: str
    dueTime: str
    completed: bool
    priority: TaskPriority
    createdAt: Optional[str] = None


class TaskListResponse(BaseModel):
    success: bool = True
    data: list[TaskResponse]


class SingleTaskResponse(BaseModel):
    success: bool = True
    data: TaskResponse
    message: Optional[str] = None


class DeleteTaskResponse(BaseModel):
    success: bool = True
    message: str = "Task deleted"


class ImportTasksResponse(BaseModel):
    success: bool = True
    imported: int

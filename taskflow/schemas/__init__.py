"""
Pydantic Schemas
================

Request/response schemas for API validation and serialization.
"""

from taskflow.schemas.common import BaseResponse, ErrorDetail, ErrorResponse
from taskflow.schemas.push import (
    PushConfigResponse,
    PushReminderRunResponse,
    PushSubscribeRequest,
    PushUnsubscribeRequest,
)
from taskflow.schemas.task import (
    ImportTasksRequest,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)

__all__ = [
    "BaseResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ImportTasksRequest",
    "PushConfigResponse",
    "PushReminderRunResponse",
    "PushSubscribeRequest",
    "PushUnsubscribeRequest",
    "TaskCreate",
    "TaskResponse",
    "TaskUpdate",
]

"""
Push API Endpoints
==================

Web Push configuration and subscription registry.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.rate_limit import create_rate_limit_dependency
from taskflow.db.session import get_db
from taskflow.dependencies import CurrentUser
from taskflow.schemas.common import BaseResponse
from taskflow.schemas.push import (
    PushConfigResponse,
    PushSubscribeRequest,
    PushUnsubscribeRequest,
)
from taskflow.services.push_service import PushSubscriptionService

router = APIRouter()

push_rate_limit = Depends(create_rate_limit_dependency("push"))


@router.get(
    "/config",
    response_model=PushConfigResponse,
    response_model_by_alias=True,
)
async def get_push_config():
    """
    Tell clients whether server push is available and which key to use.
    """
    return PushConfigResponse(**PushSubscriptionService.get_config())


@router.post(
    "/subscribe",
    response_model=BaseResponse[None],
    dependencies=[push_rate_limit],
)
async def subscribe(
    request: PushSubscribeRequest,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Register (or move) a browser push subscription to the current user.
    """
    service = PushSubscriptionService(db)
    await service.register(current_user.user_id, request)
    return BaseResponse(success=True, message="Subscribed")


@router.delete(
    "/subscribe",
    response_model=BaseResponse[None],
    dependencies=[push_rate_limit],
)
async def unsubscribe(
    request: PushUnsubscribeRequest,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Remove the current user's subscription for an endpoint.
    """
    service = PushSubscriptionService(db)
    await service.unregister(current_user.user_id, request.endpoint)
    return BaseResponse(success=True, message="Unsubscribed")

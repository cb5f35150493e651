"""
Cron API Endpoints
==================

Hooks invoked by the external scheduler. Authorized with
``Authorization: Bearer <CRON_SECRET>``, or by the header named in
``CRON_TRUSTED_HEADER`` when the platform scheduler sets one.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.errors import AuthenticationError, ErrorCodes, ServiceUnavailableError
from taskflow.core.security import is_trusted_scheduler, verify_cron_authorization
from taskflow.db.session import get_db
from taskflow.schemas.push import PushReminderRunResponse
from taskflow.services.scheduled_jobs import run_push_reminders
from taskflow.services.web_push import PushNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter()


async def require_cron_secret(
    request: Request,
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    if is_trusted_scheduler(request.headers):
        return
    if not verify_cron_authorization(authorization):
        raise AuthenticationError(
            code=ErrorCodes.CRON_UNAUTHORIZED,
            message="Unauthorized.",
        )


@router.api_route(
    "/push-reminders",
    methods=["GET", "POST"],
    response_model=PushReminderRunResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_cron_secret)],
)
async def push_reminders(
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Send Web Push reminders for tasks that just became due.
    """
    try:
        result = await run_push_reminders(db)
    except PushNotConfiguredError as exc:
        raise ServiceUnavailableError(
            code=ErrorCodes.PUSH_NOT_CONFIGURED,
            message=str(exc),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    return PushReminderRunResponse(
        ok=True,
        sent=result["sent"],
        removed_subscriptions=result["removed_subscriptions"],
        skipped=result["skipped"],
        failed=result["failed"],
        run_at=result["run_at"],
    )

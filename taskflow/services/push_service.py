"""
Push Subscription Service
=========================

Registry of browser push subscriptions.
"""

import logging
import uuid

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.config import settings
from taskflow.models.push import PushSubscription
from taskflow.schemas.push import PushSubscribeRequest

logger = logging.getLogger(__name__)


class PushSubscriptionService:
    """Service for registering and removing push subscriptions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def get_config() -> dict:
        """Public push configuration."""
        return {
            "configured": settings.push_configured,
            "vapidPublicKey": settings.VAPID_PUBLIC_KEY,
        }

    async def register(
        self,
        user_id: uuid.UUID,
        request: PushSubscribeRequest,
    ) -> None:
        """
        Upsert a subscription by endpoint.

        An endpoint already registered by another account moves to this one.
        """
        stmt = pg_insert(PushSubscription).values(
            subscription_id=uuid.uuid4(),
            user_id=user_id,
            endpoint=request.endpoint,
            p256dh=request.keys.p256dh,
            auth=request.keys.auth,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PushSubscription.endpoint],
            set_={
                "user_id": stmt.excluded.user_id,
                "p256dh": stmt.excluded.p256dh,
                "auth": stmt.excluded.auth,
                "updated_at": func.now(),
            },
        )
        await self.db.execute(stmt)
        logger.info("Registered push subscription for user %s", user_id)

    async def unregister(self, user_id: uuid.UUID, endpoint: str) -> int:
        """Delete the caller's subscription for *endpoint*. Returns rows removed."""
        result = await self.db.execute(
            delete(PushSubscription).where(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint == endpoint,
            )
        )
        return result.rowcount or 0

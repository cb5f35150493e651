"""
Scheduled Jobs
==============

Entry points for jobs triggered by an external scheduler:
- Web Push task reminders (every minute)
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.services.push_dispatcher import PushDispatcher, PushReminderRepository
from taskflow.services.web_push import WebPushSender


# Job runner functions (can be called from a cron endpoint or a scheduler)

async def run_push_reminders(
    db: AsyncSession,
    sender: Optional[WebPushSender] = None,
) -> dict:
    """Run one Web Push reminder dispatch pass."""
    dispatcher = PushDispatcher(
        PushReminderRepository(db),
        sender or WebPushSender(),
    )
    return await dispatcher.run()

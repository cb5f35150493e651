"""
Web Push Transport
==================

Thin async wrapper around ``pywebpush``. The library call is blocking, so
each delivery runs in a worker thread.
"""

import asyncio
import json
import logging
from typing import Optional

from pywebpush import WebPushException, webpush

from taskflow.config import settings

logger = logging.getLogger(__name__)

# Push services answer 404/410 for subscriptions that no longer exist
GONE_STATUS_CODES = (404, 410)


class PushNotConfiguredError(Exception):
    """VAPID credentials are missing."""


class PushDeliveryError(Exception):
    """A single delivery failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def gone(self) -> bool:
        return self.status_code in GONE_STATUS_CODES


class WebPushSender:
    """Deliver JSON payloads to browser push subscriptions."""

    def __init__(
        self,
        public_key: Optional[str] = None,
        private_key: Optional[str] = None,
        subject: Optional[str] = None,
        ttl: int = 60 * 60,
    ):
        self.public_key = public_key if public_key is not None else settings.VAPID_PUBLIC_KEY
        self.private_key = private_key if private_key is not None else settings.VAPID_PRIVATE_KEY
        self.subject = subject if subject is not None else settings.VAPID_SUBJECT
        self.ttl = ttl

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.private_key and self.subject)

    def ensure_configured(self) -> None:
        """
        Raises:
            PushNotConfiguredError: If any VAPID credential is missing
        """
        if not self.configured:
            raise PushNotConfiguredError(
                "Push notifications are not configured on the server."
            )

    def _send_blocking(self, subscription_info: dict, data: str) -> None:
        subject = self.subject
        if not subject.startswith(("mailto:", "https:")):
            subject = f"mailto:{subject}"
        try:
            webpush(
                subscription_info=subscription_info,
                data=data,
                vapid_private_key=self.private_key,
                vapid_claims={"sub": subject},
                ttl=self.ttl,
                headers={"Urgency": "high", "Topic": "task-reminder"},
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise PushDeliveryError(str(exc), status_code=status_code) from exc

    async def send(self, subscription_info: dict, payload: dict) -> None:
        """
        Deliver one payload.

        Raises:
            PushNotConfiguredError: If VAPID credentials are missing
            PushDeliveryError: If the push service rejected the message
        """
        self.ensure_configured()
        data = json.dumps(payload)
        await asyncio.to_thread(self._send_blocking, subscription_info, data)

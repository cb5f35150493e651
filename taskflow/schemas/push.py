"""
Push Schemas
============

Pydantic schemas for the push subscription registry.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _required(value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError("Invalid push subscription payload.")
    return cleaned


class PushKeys(BaseModel):
    p256dh: str
    auth: str

    @field_validator("p256dh", "auth")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        return _required(v)


class PushSubscribeRequest(BaseModel):
    """Browser ``PushSubscription.toJSON()`` payload."""

    model_config = ConfigDict(extra="ignore")

    endpoint: str
    keys: PushKeys

    @field_validator("endpoint")
    @classmethod
    def _endpoint(cls, v: str) -> str:
        return _required(v)


class PushUnsubscribeRequest(BaseModel):
    endpoint: str

    @field_validator("endpoint")
    @classmethod
    def _endpoint(cls, v: str) -> str:
        cleaned = (v or "").strip()
        if not cleaned:
            raise ValueError("Endpoint is required.")
        return cleaned


class PushConfigResponse(BaseModel):
    """Public configuration read by clients before creating a subscription."""

    model_config = ConfigDict(populate_by_name=True)

    configured: bool
    vapid_public_key: str = Field(alias="vapidPublicKey")


class PushReminderRunResponse(BaseModel):
    """Summary returned by the reminder cron endpoint."""

    ok: bool = True
    sent: int
    removed_subscriptions: int = Field(alias="removedSubscriptions")
    skipped: int
    failed: int
    run_at: str = Field(alias="runAt")

    model_config = ConfigDict(populate_by_name=True)

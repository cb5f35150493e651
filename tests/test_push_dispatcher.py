"""
Push Dispatcher Tests
=====================

Reminder dispatch against an in-memory repository and sender:
- delivery inside the grace window, one per subscription
- de-duplication through the notification log
- expired subscriptions pruned, other failures retried next run
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from taskflow.services.push_dispatcher import PushDispatcher, build_reminder_payload
from taskflow.services.web_push import (
    PushDeliveryError,
    PushNotConfiguredError,
    WebPushSender,
)

from factories import make_subscription, make_task, make_user


class FakeRepository:
    def __init__(self, tasks):
        self.tasks = tasks
        self.logs = set()
        self.deleted = []
        self.failing_logs = 0
        self.rollbacks = 0

    async def candidate_tasks(self, not_before):
        return [t for t in self.tasks if not t.completed and t.due_date >= not_before]

    async def is_logged(self, task_id, subscription_id, due_date, due_time):
        return (task_id, subscription_id, due_date, due_time) in self.logs

    async def record_log(self, task_id, subscription_id, due_date, due_time):
        if self.failing_logs:
            self.failing_logs -= 1
            raise OperationalError("INSERT", {}, Exception("connection reset"))
        self.logs.add((task_id, subscription_id, due_date, due_time))

    async def delete_subscription(self, subscription_id):
        self.deleted.append(subscription_id)
        for task in self.tasks:
            task.user.push_subscriptions = [
                s for s in task.user.push_subscriptions
                if s.subscription_id != subscription_id
            ]

    async def rollback(self):
        self.rollbacks += 1


class FakeSender:
    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.sent = []

    def ensure_configured(self):
        return None

    async def send(self, subscription_info, payload):
        endpoint = subscription_info["endpoint"]
        if endpoint in self.failures:
            raise self.failures[endpoint]
        self.sent.append((endpoint, payload))


def _clock(hour: int, minute: int):
    return lambda: datetime(2026, 10, 17, hour, minute, tzinfo=timezone.utc)


def _due_task(*subscription_names, tz="UTC", **task_fields):
    user = make_user(timezone=tz)
    user.push_subscriptions = [make_subscription(name) for name in subscription_names]
    task = make_task(1, **task_fields)
    task.user = user
    return task


def _dispatcher(repository, sender, hour, minute):
    return PushDispatcher(
        repository,
        sender,
        grace=timedelta(minutes=10),
        clock=_clock(hour, minute),
        default_timezone="UTC",
    )


class TestDueWindow:

    @pytest.mark.asyncio
    async def test_sends_once_per_subscription_within_grace(self):
        repository = FakeRepository([_due_task("phone", "laptop")])
        sender = FakeSender()

        result = await _dispatcher(repository, sender, 9, 5).run()

        assert result["sent"] == 2
        assert {endpoint for endpoint, _ in sender.sent} == {
            "https://push.example.com/phone",
            "https://push.example.com/laptop",
        }
        assert len(repository.logs) == 2

    @pytest.mark.asyncio
    async def test_second_run_sends_nothing(self):
        repository = FakeRepository([_due_task("phone", "laptop")])
        sender = FakeSender()

        await _dispatcher(repository, sender, 9, 5).run()
        result = await _dispatcher(repository, sender, 9, 7).run()

        assert result["sent"] == 0
        assert result["skipped"] == 2
        assert len(sender.sent) == 2

    @pytest.mark.asyncio
    async def test_past_grace_sends_nothing(self):
        repository = FakeRepository([_due_task("phone")])
        sender = FakeSender()

        result = await _dispatcher(repository, sender, 9, 25).run()

        assert result["sent"] == 0
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_future_task_sends_nothing(self):
        repository = FakeRepository([_due_task("phone", due_time="09:30")])
        sender = FakeSender()

        result = await _dispatcher(repository, sender, 9, 5).run()

        assert result["sent"] == 0

    @pytest.mark.asyncio
    async def test_due_instant_uses_owner_timezone(self):
        # 09:00 in Kolkata is 03:30 UTC
        repository = FakeRepository([_due_task("phone", tz="Asia/Kolkata")])
        sender = FakeSender()

        at_utc_nine = await _dispatcher(repository, sender, 9, 5).run()
        at_local_nine = await _dispatcher(repository, sender, 3, 35).run()

        assert at_utc_nine["sent"] == 0
        assert at_local_nine["sent"] == 1

    @pytest.mark.asyncio
    async def test_edited_due_time_is_a_new_reminder(self):
        task = _due_task("phone")
        repository = FakeRepository([task])
        sender = FakeSender()

        await _dispatcher(repository, sender, 9, 5).run()
        task.due_time = "09:40"
        result = await _dispatcher(repository, sender, 9, 45).run()

        assert result["sent"] == 1
        assert len(sender.sent) == 2


class TestDeliveryFailures:

    @pytest.mark.asyncio
    async def test_gone_subscription_is_pruned_and_not_retried(self):
        repository = FakeRepository([_due_task("phone", "stale")])
        sender = FakeSender({
            "https://push.example.com/stale": PushDeliveryError("Gone", status_code=410),
        })

        first = await _dispatcher(repository, sender, 9, 5).run()
        del sender.failures["https://push.example.com/stale"]
        second = await _dispatcher(repository, sender, 9, 6).run()

        assert first["sent"] == 1
        assert first["removed_subscriptions"] == 1
        assert len(repository.deleted) == 1
        assert second["sent"] == 0
        assert [endpoint for endpoint, _ in sender.sent] == ["https://push.example.com/phone"]

    @pytest.mark.asyncio
    async def test_other_failures_leave_no_log_and_retry(self):
        repository = FakeRepository([_due_task("phone")])
        sender = FakeSender({
            "https://push.example.com/phone": PushDeliveryError("Server error", status_code=500),
        })

        first = await _dispatcher(repository, sender, 9, 5).run()
        sender.failures.clear()
        second = await _dispatcher(repository, sender, 9, 6).run()

        assert first["failed"] == 1
        assert first["sent"] == 0
        assert repository.deleted == []
        assert second["sent"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_abort_batch(self):
        repository = FakeRepository([_due_task("broken", "phone")])
        sender = FakeSender({"https://push.example.com/broken": RuntimeError("boom")})

        result = await _dispatcher(repository, sender, 9, 5).run()

        assert result["failed"] == 1
        assert result["sent"] == 1

    @pytest.mark.asyncio
    async def test_database_error_on_log_does_not_abort_batch(self):
        repository = FakeRepository([_due_task("phone", "laptop")])
        repository.failing_logs = 1
        sender = FakeSender()

        first = await _dispatcher(repository, sender, 9, 5).run()
        second = await _dispatcher(repository, sender, 9, 6).run()

        assert first["failed"] == 1
        assert first["sent"] == 1
        assert repository.rollbacks == 1
        assert len(repository.logs) == 2
        assert second["sent"] == 1
        assert second["skipped"] == 1

    @pytest.mark.asyncio
    async def test_completed_tasks_are_ignored(self):
        repository = FakeRepository([_due_task("phone", completed=True)])
        sender = FakeSender()

        result = await _dispatcher(repository, sender, 9, 5).run()

        assert result["sent"] == 0


class TestConfiguration:

    @pytest.mark.asyncio
    async def test_missing_vapid_keys_abort_run(self):
        repository = FakeRepository([_due_task("phone")])
        sender = WebPushSender(public_key="", private_key="", subject="")

        with pytest.raises(PushNotConfiguredError):
            await _dispatcher(repository, sender, 9, 5).run()

    def test_gone_status_codes(self):
        assert PushDeliveryError("x", status_code=404).gone
        assert PushDeliveryError("x", status_code=410).gone
        assert not PushDeliveryError("x", status_code=500).gone
        assert not PushDeliveryError("x").gone


def test_payload_content():
    task = make_task(3, title="Call mom", due_time="18:15")

    payload = build_reminder_payload(task, click_url="/workspace")

    assert payload == {
        "title": "Task Due: Call mom",
        "body": "Due now at 18:15 (2026-10-17)",
        "url": "/workspace",
    }

"""
Test suite for the outbox dispatcher.
Verifies cursor handling, idempotent resubmission and bounded submission
retries with exponential backoff.
"""
from datetime import datetime, timezone

from feeds.models import ChangeKind, Event, EventChange
from notifications.dispatcher import OutboxDispatcher
from notifications.job_queue import RetryPolicy


def seed_outbox(store, count, unit_id="ward-1"):
    for n in range(count):
        uid = f"event-{n}"
        store.apply_diff(
            unit_id,
            "main",
            [Event(uid=uid, title=uid, start=datetime(2026, 7, 1, tzinfo=timezone.utc))],
            [],
            [EventChange(f"main:{uid}", ChangeKind.CREATED)],
        )


def test_dispatch_submits_each_record_once(store, job_queue):
    seed_outbox(store, 3)
    sleeps = []
    dispatcher = OutboxDispatcher(store, job_queue, sleep=sleeps.append)

    assert dispatcher.dispatch_pending("ward-1") == 3
    assert dispatcher.dispatch_pending("ward-1") == 0

    assert sorted(job_queue.jobs) == ["ward-1:1", "ward-1:2", "ward-1:3"]
    assert job_queue.jobs["ward-1:2"].payload == {"unit_id": "ward-1", "event_outbox_id": 2}
    assert store.get_dispatch_cursor("ward-1") == 3
    assert sleeps == []


def test_resubmitting_same_key_runs_job_once(store, job_queue, monkeypatch):
    """A crash after submit but before the cursor moved must not double deliver."""
    seed_outbox(store, 1)
    dispatcher = OutboxDispatcher(store, job_queue, sleep=lambda _: None)
    dispatcher.dispatch_pending("ward-1")

    # Simulate the lost cursor update
    monkeypatch.setattr(store, "get_dispatch_cursor", lambda unit_id: 0)
    dispatcher.dispatch_pending("ward-1")

    assert job_queue.submit_calls == 2
    while job_queue.claim_due() is not None:
        pass
    assert job_queue.executions == ["ward-1:1"]


def test_transient_submit_failures_are_retried_with_backoff(store, make_job_queue):
    seed_outbox(store, 1)
    queue = make_job_queue(fail_submits=3)
    sleeps = []
    dispatcher = OutboxDispatcher(
        store, queue, max_submit_attempts=5, base_delay=0.5, max_delay=1.5, sleep=sleeps.append
    )

    assert dispatcher.dispatch_pending("ward-1") == 1
    assert sleeps == [0.5, 1.0, 1.5]
    assert store.get_dispatch_cursor("ward-1") == 1


def test_exhausted_submission_stops_pass_and_keeps_records_pending(store, make_job_queue):
    seed_outbox(store, 2)
    queue = make_job_queue(fail_submits=3)
    dispatcher = OutboxDispatcher(store, queue, max_submit_attempts=3, sleep=lambda _: None)

    assert dispatcher.dispatch_pending("ward-1") == 0
    assert store.get_dispatch_cursor("ward-1") == 0
    assert queue.submit_calls == 3, "second record must not be attempted after the first gave up"

    # Queue is reachable again on the next pass
    assert dispatcher.dispatch_pending("ward-1") == 2
    assert store.get_dispatch_cursor("ward-1") == 2


def test_retry_policy_travels_with_job(store, job_queue):
    seed_outbox(store, 1)
    policy = RetryPolicy(max_attempts=2, backoff_seconds=1.0, max_backoff_seconds=4.0)
    OutboxDispatcher(store, job_queue, retry_policy=policy).dispatch_pending("ward-1")
    assert job_queue.jobs["ward-1:1"].retry_policy == policy

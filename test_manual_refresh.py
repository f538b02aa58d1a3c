"""
Test suite for rate-limited manual refreshes.
"""
from unittest.mock import patch

from feeds.reconcile import FeedReconciler
from feeds.trigger import build_rate_limit_key, refresh_unit
from notifications.dispatcher import OutboxDispatcher
from utils.error_handling import StoreWriteError
from utils.rate_limiter import FixedWindowRateLimiter

URL = "https://calendar.example.org/ward.ics"
COUNCIL = "UID:council\nSUMMARY:Ward Council\nDTSTART:20260701T180000Z"


def make_reconciler(store, fetcher, unit_configs, build_ics):
    unit_configs.configs["ward-1"] = {"feeds": [{"id": "main", "url": URL}]}
    fetcher.responses[URL] = build_ics(COUNCIL)
    return FeedReconciler(store, fetcher=fetcher, config_loader=unit_configs)


def test_rate_limit_key_format():
    assert build_rate_limit_key("clerk", "ward-1") == "calendar-refresh:clerk:ward-1"


def test_manual_refresh_is_rate_limited(store, fetcher, unit_configs, build_ics):
    reconciler = make_reconciler(store, fetcher, unit_configs, build_ics)
    limiter = FixedWindowRateLimiter("test", window_seconds=600, clock=lambda: 0.0)

    first = refresh_unit("ward-1", "clerk", reconciler=reconciler, limiter=limiter, max_attempts=2)
    second = refresh_unit("ward-1", "clerk", reconciler=reconciler, limiter=limiter, max_attempts=2)
    third = refresh_unit("ward-1", "clerk", reconciler=reconciler, limiter=limiter, max_attempts=2)

    assert not first.rate_limited and not second.rate_limited
    assert third.rate_limited is True
    assert third.feeds == []
    assert len(fetcher.calls) == 2, "refused refresh must not fetch"


def test_scheduled_refresh_is_not_rate_limited(store, fetcher, unit_configs, build_ics):
    reconciler = make_reconciler(store, fetcher, unit_configs, build_ics)
    limiter = FixedWindowRateLimiter("test", window_seconds=600, clock=lambda: 0.0)

    for _ in range(3):
        summary = refresh_unit(
            "ward-1", "scheduler", reason="scheduled", reconciler=reconciler, limiter=limiter, max_attempts=1
        )
        assert summary.rate_limited is False


def test_changes_are_dispatched_after_refresh(store, fetcher, unit_configs, build_ics, job_queue):
    reconciler = make_reconciler(store, fetcher, unit_configs, build_ics)
    dispatcher = OutboxDispatcher(store, job_queue, sleep=lambda _: None)

    summary = refresh_unit("ward-1", "clerk", reconciler=reconciler, dispatcher=dispatcher)

    assert summary.total_changes == 1
    assert list(job_queue.jobs) == ["ward-1:1"]
    assert store.get_dispatch_cursor("ward-1") == 1


def test_unchanged_refresh_does_not_touch_queue(store, fetcher, unit_configs, build_ics, job_queue):
    reconciler = make_reconciler(store, fetcher, unit_configs, build_ics)
    dispatcher = OutboxDispatcher(store, job_queue, sleep=lambda _: None)
    refresh_unit("ward-1", "clerk", reconciler=reconciler, dispatcher=dispatcher)
    calls = job_queue.submit_calls

    refresh_unit("ward-1", "clerk", reconciler=reconciler, dispatcher=dispatcher)

    assert job_queue.submit_calls == calls


def test_shared_limiter_is_used_by_default(store, fetcher, unit_configs, build_ics):
    reconciler = make_reconciler(store, fetcher, unit_configs, build_ics)
    results = [refresh_unit("ward-1", "clerk", reconciler=reconciler, max_attempts=1) for _ in range(2)]
    assert [summary.rate_limited for summary in results] == [False, True]


def test_failed_dispatch_still_returns_refresh_summary(store, fetcher, unit_configs, build_ics, job_queue):
    reconciler = make_reconciler(store, fetcher, unit_configs, build_ics)
    dispatcher = OutboxDispatcher(store, job_queue, sleep=lambda _: None)

    with patch.object(store, "set_dispatch_cursor", side_effect=StoreWriteError("disk full")):
        summary = refresh_unit("ward-1", "clerk", reconciler=reconciler, dispatcher=dispatcher)

    assert summary.get("main").added == 1
    assert summary.to_dict()["feeds"]["main"]["status"] == "success"
    assert store.get_dispatch_cursor("ward-1") == 0
    assert len(store.list_outbox("ward-1", after_id=0)) == 1

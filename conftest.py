"""
Shared pytest fixtures: a throwaway data directory, a file-backed store,
canned feed fetchers and an in-memory stand-in for the Redis job queue.
"""
import os
import sys
import tempfile

# Settings are read at import time, so point DATA_DIR somewhere disposable first
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="wardsync-test-"))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from datetime import datetime, timezone

import pytest

from feeds.store import EventStore
from notifications.job_queue import DeliveryJob, RetryPolicy
from utils.error_handling import FeedFetchError, QueueSubmissionError
from utils.rate_limiter import clear_rate_limits_for_tests


FIXED_NOW = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)


class FakeFetcher:
    """Returns canned ICS text per URL; an Exception value is raised instead."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def __call__(self, url, timeout):
        self.calls.append((url, timeout))
        response = self.responses.get(url)
        if response is None:
            raise FeedFetchError(f"no canned response for {url}")
        if isinstance(response, Exception):
            raise response
        return response


class FakeJobQueue:
    """In-memory queue with the RedisJobQueue surface used by the dispatcher and worker."""

    queue_name = "test-queue"

    def __init__(self, fail_submits=0):
        self.jobs = {}
        self.scheduled = []
        self.dead = []
        self.submit_calls = 0
        self.fail_submits = fail_submits
        self.executions = []

    def submit(self, idempotency_key, payload, retry_policy=None):
        self.submit_calls += 1
        if self.fail_submits > 0:
            self.fail_submits -= 1
            raise QueueSubmissionError("queue unreachable")
        if idempotency_key in self.jobs:
            return False
        self.jobs[idempotency_key] = DeliveryJob(idempotency_key, dict(payload), retry_policy or RetryPolicy())
        self.scheduled.append(idempotency_key)
        return True

    def claim_due(self, now=None):
        if not self.scheduled:
            return None
        job = self.jobs[self.scheduled.pop(0)]
        job.attempts += 1
        job.status = "running"
        self.executions.append(job.idempotency_key)
        return job

    def complete(self, job):
        job.status = "completed"

    def retry_later(self, job, error):
        job.last_error = error
        if job.attempts >= job.retry_policy.max_attempts:
            job.status = "failed"
            self.dead.append(job.idempotency_key)
            return False
        job.status = "scheduled"
        self.scheduled.append(job.idempotency_key)
        return True

    def get_job(self, idempotency_key):
        return self.jobs.get(idempotency_key)

    def get_stats(self):
        running = [job for job in self.jobs.values() if job.status == "running"]
        return {
            "queue": self.queue_name,
            "scheduled": len(self.scheduled),
            "processing": len(running),
            "dead": len(self.dead),
        }

    def dead_letters(self):
        return list(self.dead)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    clear_rate_limits_for_tests()
    yield
    clear_rate_limits_for_tests()


@pytest.fixture
def store(tmp_path):
    return EventStore(base_dir=str(tmp_path / "units"), clock=lambda: FIXED_NOW)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def job_queue():
    return FakeJobQueue()


@pytest.fixture
def unit_configs():
    """Mutable mapping of unit id -> config dict, used as a config loader."""
    configs = {}

    def loader(unit_id):
        return configs.setdefault(unit_id, {"feeds": [], "orphaned_feed_policy": "retain"})

    loader.configs = configs
    return loader


@pytest.fixture
def build_ics():
    """Wraps VEVENT bodies into a VCALENDAR document with CRLF line endings."""

    def _build(*event_bodies):
        lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Ward//Calendar//EN"]
        for body in event_bodies:
            lines.append("BEGIN:VEVENT")
            lines.extend(line.strip() for line in body.strip().splitlines())
            lines.append("END:VEVENT")
        lines.append("END:VCALENDAR")
        return "\r\n".join(lines) + "\r\n"

    return _build


@pytest.fixture
def make_job_queue():
    """Factory for queues that refuse the first N submissions."""
    return FakeJobQueue

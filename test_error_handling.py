"""
Test suite for retry_with_backoff and the feed fetcher's error mapping.
Verifies that network failures surface as FeedFetchError and that retries
stop at the attempt ceiling.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from feeds.fetching import fetch_feed
from utils.error_handling import (
    FeedFetchError,
    QueueSubmissionError,
    compute_backoff,
    retry_with_backoff,
)


def test_compute_backoff_is_capped():
    assert [compute_backoff(n, 0.5, 8.0) for n in range(7)] == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0, 8.0]


def test_retry_succeeds_after_transient_errors():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise QueueSubmissionError("busy")
        return "ok"

    result = retry_with_backoff(flaky, max_attempts=5, base_delay=1.0, max_delay=10.0,
                                retry_on=(QueueSubmissionError,), sleep=sleeps.append)

    assert result == "ok"
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_retry_raises_last_error_after_max_attempts():
    sleeps = []
    func = MagicMock(side_effect=QueueSubmissionError("down"))

    with pytest.raises(QueueSubmissionError):
        retry_with_backoff(func, max_attempts=3, base_delay=1.0, max_delay=1.5,
                           retry_on=(QueueSubmissionError,), sleep=sleeps.append)

    assert func.call_count == 3
    assert sleeps == [1.0, 1.5], "no sleep after the final attempt"


def test_non_retryable_errors_propagate_immediately():
    func = MagicMock(side_effect=KeyError("bug"))

    with pytest.raises(KeyError):
        retry_with_backoff(func, max_attempts=5, retry_on=(QueueSubmissionError,), sleep=lambda _: None)

    assert func.call_count == 1

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ FEED FETCHING                                                              ║
# ╚════════════════════════════════════════════════════════════════════════════╝

def test_fetch_feed_returns_text():
    response = MagicMock(text="BEGIN:VCALENDAR")
    with patch("feeds.fetching.requests.get", return_value=response) as get:
        assert fetch_feed("https://example.org/a.ics", timeout=4.0) == "BEGIN:VCALENDAR"

    assert get.call_args.kwargs["timeout"] == 4.0


@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout("read timed out"),
    requests.exceptions.ConnectionError("connection refused"),
    requests.exceptions.SSLError("EOF occurred in violation of protocol"),
])
def test_fetch_feed_network_errors_become_feed_fetch_error(error):
    with patch("feeds.fetching.requests.get", side_effect=error):
        with pytest.raises(FeedFetchError):
            fetch_feed("https://example.org/a.ics")


def test_fetch_feed_bad_status_becomes_feed_fetch_error():
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=MagicMock(status_code=404))
    with patch("feeds.fetching.requests.get", return_value=response):
        with pytest.raises(FeedFetchError, match="404"):
            fetch_feed("https://example.org/missing.ics")

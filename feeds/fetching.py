"""
fetching.py: Downloads raw ICS text for a feed source.
"""
from typing import Callable

import requests

from utils.environ import FEED_FETCH_TIMEOUT_SECONDS
from utils.error_handling import FeedFetchError
from utils.logging import logger

FeedFetcher = Callable[[str, float], str]

USER_AGENT = "wardsync/1.0 (+calendar feed refresh)"

# --- fetch_feed ---
# Downloads a feed with a bounded timeout.
# Args:
#     url: The published ICS URL.
#     timeout: Seconds before the request is abandoned.
# Returns: The decoded feed text.
# Raises: FeedFetchError on network failure, timeout or a non-success status.
def fetch_feed(url: str, timeout: float = FEED_FETCH_TIMEOUT_SECONDS) -> str:
    logger.debug(f"Fetching ICS feed from {url}")
    try:
        response = requests.get(
            url,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Cache-Control": "no-cache"}
        )
        response.raise_for_status()
    except requests.exceptions.Timeout as e:
        raise FeedFetchError(f"Timed out after {timeout}s fetching feed") from e
    except requests.exceptions.HTTPError as e:
        raise FeedFetchError(f"Feed responded with {e.response.status_code}") from e
    except requests.exceptions.RequestException as e:
        raise FeedFetchError(f"Network error fetching feed: {e}") from e

    response.encoding = "utf-8"
    logger.debug(f"Fetched {len(response.text)} chars from {url}")
    return response.text

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                     WARD SYNC ERROR HANDLING UTILITIES                     ║
# ║  Exception taxonomy for feed sync and a bounded exponential backoff retry  ║
# ║                   helper used for queue submissions.                       ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Standard library imports
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

# Local application imports
from utils.logging import logger

T = TypeVar("T")

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ EXCEPTION HIERARCHY                                                        ║
# ╚════════════════════════════════════════════════════════════════════════════╝

class FeedSyncError(Exception):
    """Base class for recoverable feed sync failures."""


class FeedFetchError(FeedSyncError):
    """A feed could not be downloaded (network error, timeout, bad status)."""


class StoreError(FeedSyncError):
    """The event store could not be read or written."""


class StoreWriteError(StoreError):
    """The event store could not commit a change set; nothing was applied."""


class ConfigError(FeedSyncError):
    """A unit configuration is missing, unreadable or not a valid config object."""


class QueueSubmissionError(FeedSyncError):
    """The durable queue did not accept a submission."""


class DeliveryError(FeedSyncError):
    """A downstream delivery attempt failed."""

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ RETRY WITH BACKOFF                                                         ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# --- compute_backoff ---
# Exponential delay for a zero-based attempt number, capped at max_delay.
# Args:
#     attempt: Number of failed attempts so far minus one (0 for the first retry).
#     base_delay: Delay before the first retry, in seconds.
#     max_delay: Ceiling for any single delay, in seconds.
# Returns: Delay in seconds.
def compute_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2 ** max(0, attempt)), max_delay)

# --- retry_with_backoff ---
# Calls func until it succeeds or max_attempts calls have failed.
# Only exceptions listed in retry_on are retried; anything else propagates at once.
# Total sleeping time is bounded by (max_attempts - 1) * max_delay.
# Args:
#     func: Zero-argument callable to invoke.
#     max_attempts: Total number of calls allowed (>= 1).
#     base_delay: Delay before the first retry.
#     max_delay: Upper bound of a single delay.
#     retry_on: Exception types that count as transient.
#     sleep: Sleep function, replaceable in tests.
#     description: Label used in log messages.
# Returns: Whatever func returns.
# Raises: The last transient exception once attempts are exhausted.
def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    last_exception: Optional[BaseException] = None
    attempts = max(1, max_attempts)

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as e:
            last_exception = e
            if attempt + 1 < attempts:
                delay = compute_backoff(attempt, base_delay, max_delay)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                sleep(delay)
            else:
                logger.error(f"{description} failed after {attempts} attempts: {e}")

    raise last_exception

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                           RATE LIMITER MODULE                              ║
# ║   Fixed-window counters gating how often an actor may trigger an action    ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Standard library imports
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

# Local application imports
from utils.environ import MANUAL_REFRESH_WINDOW_SECONDS
from utils.logging import logger

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ FIXED WINDOW IMPLEMENTATION                                                ║
# ╚════════════════════════════════════════════════════════════════════════════╝

@dataclass
class RateLimitBucket:
    key: str
    count: int
    window_reset_at: float


class FixedWindowRateLimiter:
    # --- FixedWindowRateLimiter ---
    # Best-effort admission throttle kept in process memory.
    #
    # A window opens on the first attempt for a key and lasts window_seconds.
    # Every admitted attempt inside the window increments the bucket; once the
    # bucket holds max_attempts further attempts are refused without counting.
    # The first attempt after the window has expired opens a fresh window.
    #
    # State is lost on restart, which is acceptable for a throttle.

    # --- __init__ ---
    # Args:
    #     name: Name of the limiter for logging
    #     window_seconds: Length of one window
    #     clock: Monotonic time source, replaceable in tests
    def __init__(
        self,
        name: str,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.window_seconds = window_seconds
        self.clock = clock
        self.buckets: Dict[str, RateLimitBucket] = {}
        self.lock = threading.Lock()
        self.request_count = 0
        self.throttled_count = 0

    # --- allow ---
    # Records an attempt for key if the current window still has room.
    # Args:
    #     key: Bucket key, e.g. "calendar-refresh:<actor>:<unit>"
    #     max_attempts: Attempts admitted per window
    # Returns: True if admitted, False if the caller should try again later
    def allow(self, key: str, max_attempts: int) -> bool:
        with self.lock:
            self.request_count += 1
            now = self.clock()
            bucket = self.buckets.get(key)

            if bucket is None or now > bucket.window_reset_at:
                self.buckets[key] = RateLimitBucket(
                    key=key,
                    count=1,
                    window_reset_at=now + self.window_seconds
                )
                return True

            if bucket.count >= max_attempts:
                self.throttled_count += 1
                logger.debug(f"Rate limiter '{self.name}' refused '{key}' ({bucket.count}/{max_attempts})")
                return False

            bucket.count += 1
            return True

    # --- reset ---
    # Forgets every bucket. Intended for tests and operator resets.
    def reset(self) -> None:
        with self.lock:
            self.buckets.clear()
            self.request_count = 0
            self.throttled_count = 0

    def get_stats(self) -> Dict[str, float]:
        with self.lock:
            return {
                "name": self.name,
                "buckets": len(self.buckets),
                "request_count": self.request_count,
                "throttled_count": self.throttled_count,
            }

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ PREDEFINED RATE LIMITERS                                                   ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Manual "refresh now" triggers, keyed per actor and unit
MANUAL_REFRESH_LIMITER = FixedWindowRateLimiter(
    "manual_refresh",
    window_seconds=MANUAL_REFRESH_WINDOW_SECONDS
)

# --- clear_rate_limits_for_tests ---
def clear_rate_limits_for_tests() -> None:
    MANUAL_REFRESH_LIMITER.reset()

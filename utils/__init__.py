"""
utils package: environment, logging, error handling and rate limiting shared
by the feed and notification packages.
"""
from .environ import get_bool_env, get_int_env, get_float_env, get_str_env
from .error_handling import (
    FeedSyncError,
    FeedFetchError,
    StoreError,
    StoreWriteError,
    ConfigError,
    QueueSubmissionError,
    DeliveryError,
    retry_with_backoff,
)
from .rate_limiter import FixedWindowRateLimiter, MANUAL_REFRESH_LIMITER

__all__ = [
    'get_bool_env', 'get_int_env', 'get_float_env', 'get_str_env',
    'FeedSyncError', 'FeedFetchError', 'StoreError', 'StoreWriteError', 'ConfigError',
    'QueueSubmissionError', 'DeliveryError', 'retry_with_backoff',
    'FixedWindowRateLimiter', 'MANUAL_REFRESH_LIMITER',
]

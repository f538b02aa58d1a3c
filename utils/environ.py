# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                       ENVIRONMENT CONFIGURATION                            ║
# ║    Centralized access and type conversion for environment variables.       ║
# ║     Includes helpers for boolean, integer, float and string values.        ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Standard library imports
import os
from pathlib import Path
from typing import Optional

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ HELPER FUNCTIONS                                                           ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# --- get_bool_env ---
# Retrieves an environment variable and interprets it as a boolean.
# Considers '1', 'true', 'yes' (case-insensitive) as True.
# Args:
#     var_name: The name of the environment variable.
#     default: The default boolean value if the variable is not set.
# Returns: The boolean value of the environment variable or the default.
def get_bool_env(var_name: str, default: bool = False) -> bool:
    val = os.getenv(var_name, str(default)).lower()
    return val in ("1", "true", "yes")

# --- get_int_env ---
# Retrieves an environment variable and converts it to an integer.
# Args:
#     var_name: The name of the environment variable.
#     default: The default integer value if the variable is not set or invalid.
# Returns: The integer value of the environment variable or the default.
def get_int_env(var_name: str, default: int = 0) -> int:
    val_str = os.getenv(var_name)
    if val_str is None:
        return default
    try:
        return int(val_str)
    except ValueError:
        return default

# --- get_float_env ---
# Same as get_int_env for fractional values (delays, timeouts).
def get_float_env(var_name: str, default: float = 0.0) -> float:
    val_str = os.getenv(var_name)
    if val_str is None:
        return default
    try:
        return float(val_str)
    except ValueError:
        return default

# --- get_str_env ---
# Retrieves an environment variable as a string.
# Args:
#     var_name: The name of the environment variable.
#     default: The default string value if the variable is not set.
# Returns: The string value of the environment variable or the default.
def get_str_env(var_name: str, default: Optional[str] = "") -> Optional[str]:
    return os.getenv(var_name, default)

# --- get_default_data_dir ---
# Determines the directory holding unit configs, event state and logs.
# Checks the Docker volume first, then falls back to ./data in the project root.
# Returns: A string representing the determined directory path.
def get_default_data_dir() -> str:
    docker_path = "/data"
    if os.path.isdir(docker_path) and os.access(docker_path, os.W_OK):
        return docker_path
    project_root = Path(__file__).resolve().parent.parent
    return str(project_root / "data")

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ CORE CONFIGURATION VARIABLES                                               ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Debug mode flag (controls verbose logging)
DEBUG: bool = get_bool_env("DEBUG", False)

# Root directory for unit configuration and event state files
DATA_DIR: str = get_str_env("DATA_DIR", get_default_data_dir())

# Redis connection backing the durable notification queue
REDIS_URL: str = get_str_env("REDIS_URL", "redis://127.0.0.1:6379/0")
NOTIFICATION_QUEUE_NAME: str = get_str_env("NOTIFICATION_QUEUE_NAME", "notification-outbox")

# Downstream webhook that receives change notifications
NOTIFICATION_WEBHOOK_URL: str = get_str_env(
    "NOTIFICATION_WEBHOOK_URL", "http://127.0.0.1:5678/webhook/ward-calendar"
)

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ FEED REFRESH SETTINGS                                                      ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Upper bound for a single feed download (seconds)
FEED_FETCH_TIMEOUT_SECONDS: float = get_float_env("FEED_FETCH_TIMEOUT_SECONDS", 10.0)

# Manual "refresh now" admission control per actor and unit
MANUAL_REFRESH_MAX_ATTEMPTS: int = get_int_env("MANUAL_REFRESH_MAX_ATTEMPTS", 5)
MANUAL_REFRESH_WINDOW_SECONDS: float = get_float_env("MANUAL_REFRESH_WINDOW_SECONDS", 600.0)

# What happens to stored events of a feed removed from a unit: "retain" or "purge"
ORPHANED_FEED_POLICY: str = get_str_env("ORPHANED_FEED_POLICY", "retain")

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ NOTIFICATION DELIVERY SETTINGS                                             ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Submission retries (queue unreachable)
DISPATCH_MAX_ATTEMPTS: int = get_int_env("DISPATCH_MAX_ATTEMPTS", 5)
DISPATCH_BASE_DELAY_SECONDS: float = get_float_env("DISPATCH_BASE_DELAY_SECONDS", 0.5)
DISPATCH_MAX_DELAY_SECONDS: float = get_float_env("DISPATCH_MAX_DELAY_SECONDS", 8.0)

# Execution retries owned by the queue once a job is accepted
DELIVERY_MAX_ATTEMPTS: int = get_int_env("DELIVERY_MAX_ATTEMPTS", 5)
DELIVERY_BACKOFF_SECONDS: float = get_float_env("DELIVERY_BACKOFF_SECONDS", 5.0)
DELIVERY_MAX_BACKOFF_SECONDS: float = get_float_env("DELIVERY_MAX_BACKOFF_SECONDS", 300.0)
DELIVERY_TIMEOUT_SECONDS: float = get_float_env("DELIVERY_TIMEOUT_SECONDS", 10.0)

# How long job records (and therefore idempotency keys) are kept in Redis
JOB_TTL_SECONDS: int = get_int_env("JOB_TTL_SECONDS", 7 * 24 * 3600)

# A claimed job not completed or rescheduled within this time is handed out again
JOB_LEASE_SECONDS: int = get_int_env("JOB_LEASE_SECONDS", 300)

# Idle sleep of the notification worker between empty polls
WORKER_POLL_INTERVAL_SECONDS: float = get_float_env("WORKER_POLL_INTERVAL_SECONDS", 1.0)

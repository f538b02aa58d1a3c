# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                         WARD SYNC LOGGING SETUP                            ║
# ║ Configures queue-backed rotating file logging and colored console output.  ║
# ║ Falls back to a temp directory when the data volume is not writable.       ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# Standard library imports
import atexit
import logging
import os
import platform
import sys
import tempfile
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from queue import Queue

# Third-party imports
from colorlog import ColoredFormatter

# Local application imports
from utils.environ import DATA_DIR, DEBUG

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ LOGGING CONFIGURATION AND CONSTANTS                                        ║
# ╚════════════════════════════════════════════════════════════════════════════╝

LOGGER_NAME = "wardsync"
LOG_DIR = os.path.join(DATA_DIR, "logs")
LOG_FILE_NAME = "wardsync.log"

FALLBACK_DIRS = [
    os.path.join(tempfile.gettempdir(), "wardsync-logs"),
]

FILE_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s [%(filename)s:%(lineno)d]: %(message)s"
CONSOLE_FORMAT = "%(log_color)s[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

active_log_file = None

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ LOG DIRECTORY SETUP                                                        ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# --- find_log_file ---
# Picks the first writable directory among LOG_DIR and FALLBACK_DIRS.
# Returns: Path of the log file to use, or None for console-only logging.
def find_log_file():
    for directory in [LOG_DIR] + FALLBACK_DIRS:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            print(f"Notice: Could not use log directory {directory}: {e}")
            continue
        if os.access(directory, os.W_OK):
            return os.path.join(directory, LOG_FILE_NAME)
    print("WARNING: No writable log directory found. File logging disabled.")
    return None

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ LOGGER INITIALIZATION                                                      ║
# ╚════════════════════════════════════════════════════════════════════════════╝

logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(logging.DEBUG if DEBUG else logging.INFO)

# --- configure_logging ---
# Wires the QueueHandler on the shared logger and starts a QueueListener that
# forwards records to the console and (if possible) to a daily rotating file.
# Safe to call more than once; only the first call configures handlers.
def configure_logging():
    global active_log_file
    if getattr(logger, "_initialized", False):
        return

    level = logging.DEBUG if DEBUG else logging.INFO
    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(
        CONSOLE_FORMAT,
        datefmt=DATE_FORMAT,
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
    ))
    console_handler.setLevel(level)
    handlers.append(console_handler)

    active_log_file = find_log_file()
    if active_log_file:
        try:
            file_handler = TimedRotatingFileHandler(
                active_log_file,
                when="midnight",
                interval=1,
                backupCount=7,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            file_handler.setLevel(level)
            handlers.append(file_handler)
        except OSError as e:
            print(f"ERROR: Failed to set up file logging handler: {e}")
            active_log_file = None

    log_queue = Queue(-1)
    logger.addHandler(QueueHandler(log_queue))
    listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    listener.start()
    logger._listener = listener
    logger._initialized = True

    # --- cleanup ---
    # Drains the queue and closes handlers on interpreter exit.
    def cleanup():
        listener.stop()
        for handler in handlers:
            handler.close()

    atexit.register(cleanup)

    logger.info(f"--- Logging Initialized ({platform.system()} {platform.release()}) ---")
    logger.info(f"Log Level: {'DEBUG' if DEBUG else 'INFO'}")
    if active_log_file:
        logger.info(f"Log File: {active_log_file}")
    else:
        logger.warning("File logging is disabled.")

configure_logging()

# --- get_log_file_location ---
# Returns: The active log file path, or a note that logging is console only.
def get_log_file_location():
    if active_log_file:
        return active_log_file
    return "Console only (File logging disabled)"

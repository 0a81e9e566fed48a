"""Configuration and constants for recipebox.

Values come from the process environment, optionally seeded from a `.env`
file in the working directory.
"""
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# REST gateway
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:5001/api")
REQUEST_TIMEOUT = _env_float("RECIPEBOX_REQUEST_TIMEOUT", 10.0)

# Hosted auth provider
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
AUTH_TIMEOUT = 10

# Polling (seconds)
MESSAGE_POLL_INTERVAL = _env_float("RECIPEBOX_MESSAGE_POLL_INTERVAL", 30.0)
NOTIFICATION_POLL_INTERVAL = _env_float("RECIPEBOX_NOTIFICATION_POLL_INTERVAL", 60.0)

NOTIFICATION_PAGE_SIZE = 20
MAX_MESSAGE_LENGTH = 1000

# Undo optimistic local changes when the server call behind them fails
ROLLBACK_OPTIMISTIC = _env_bool("RECIPEBOX_ROLLBACK_OPTIMISTIC", False)

# Storage settings
KEYRING_SERVICE = "recipebox"

DEBUG = _env_bool("RECIPEBOX_DEBUG", False)
DEBUG_LOG_FILE = Path.home() / ".recipebox_debug.log"


def get_logger(name: str) -> logging.Logger:
    """Return a `recipebox.*` logger.

    Handlers are attached once, on the package root logger. With
    RECIPEBOX_DEBUG set, records go to stderr and to ~/.recipebox_debug.log
    at DEBUG; otherwise only warnings reach stderr.
    """
    root = logging.getLogger("recipebox")
    if not root.handlers:
        level = logging.DEBUG if DEBUG else logging.WARNING
        root.setLevel(level)
        fmt = logging.Formatter("[%(name)s] %(levelname)s: %(message)s")
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(level)
        stream.setFormatter(fmt)
        root.addHandler(stream)

        # Textual captures stdout/stderr while running, so keep a file copy.
        if DEBUG:
            try:
                fh = logging.FileHandler(DEBUG_LOG_FILE, encoding="utf-8")
                fh.setLevel(level)
                fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
                root.addHandler(fh)
            except OSError:
                root.warning("Could not open debug log file %s", DEBUG_LOG_FILE)
    if name == "recipebox" or name.startswith("recipebox."):
        return logging.getLogger(name)
    return logging.getLogger(f"recipebox.{name}")

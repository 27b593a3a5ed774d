"""Defaults loaded from environment variables; CLI flags override them."""

import os

DEFAULT_POLL_MS = 100
MIN_POLL_MS = 10
MAX_POLL_MS = 2000

# Guest
POLL_MS = int(os.getenv("MBX_POLL_MS", str(DEFAULT_POLL_MS)))
EXEC_TIMEOUT = float(os.getenv("MBX_EXEC_TIMEOUT", "60"))
MERGE_STDERR = os.getenv("MBX_STDERR", "0") == "1"

# Host
TIMEOUT_MS = int(os.getenv("MBX_TIMEOUT_MS", "5000"))
HOST_POLL_MS = int(os.getenv("MBX_HOST_POLL_MS", "50"))

# Both
ENCODING = os.getenv("MBX_ENCODING", "utf-8")
LOG_LEVEL = os.getenv("MBX_LOG_LEVEL", "INFO").upper()


def clamp_poll_ms(value: int) -> int:
    """Out-of-range poll intervals fall back to the default rather than clipping."""
    if MIN_POLL_MS <= value <= MAX_POLL_MS:
        return value
    return DEFAULT_POLL_MS

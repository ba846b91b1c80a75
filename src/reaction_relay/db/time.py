# src/reaction_relay/db/time.py
"""Time utilities for queue rows."""

import time


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)

"""
Clock Module

Source of server-assigned timestamps. The engine takes a clock so tests can
pin transaction dates.
"""

from datetime import datetime, timezone


class SystemClock:
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

import time
from datetime import datetime, timezone


class SystemClock:
    """Monotonic clock for latencies, UTC wall clock for timestamps."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

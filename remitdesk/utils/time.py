import math
import time
from datetime import datetime, timezone
from typing import Callable, Optional

# Components take a clock returning epoch milliseconds so TTL and age checks are testable.
Clock = Callable[[], int]

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_timestamp_ms(ts, default: Optional[int] = None) -> Optional[int]:
    """
    Normalize timestamps to epoch milliseconds (int).
    Accepts:
    - int/float: treated as epoch ms (or seconds if suspiciously small)
    - numeric strings, same rule as numbers
    - ISO-8601 string: parsed via datetime.fromisoformat (supports trailing 'Z')
    Returns `default` when the value is missing, unparseable, non-finite or
    not after the epoch.
    """
    if ts is None or isinstance(ts, bool):
        return default
    if isinstance(ts, (int, float)):
        if isinstance(ts, float) and not math.isfinite(ts):
            return default
        v = int(ts)
        if v <= 0:
            return default
        # Heuristic: if looks like seconds (< 10^12), convert to ms.
        return v * 1000 if v < 10**12 else v
    if isinstance(ts, str):
        s = ts.strip()
        if not s:
            return default
        if s.isdigit():
            return parse_timestamp_ms(int(s), default)
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return default
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        v = int(dt.timestamp() * 1000)
        return v if v > 0 else default
    return default


def iso_from_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def elapsed_minutes(start_ms: int, now: int) -> int:
    """Whole minutes elapsed, floored and clamped at zero."""
    return max(0, int((now - start_ms) // MINUTE_MS))

"""Time helpers.

Timestamps are stored as naive UTC so SQLite and PostgreSQL compare them the
same way.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_in(clock: Clock, seconds: int) -> datetime:
    """Absolute expiry ``seconds`` from the clock's now."""
    return clock() + timedelta(seconds=seconds)


def is_expired(expire: Optional[datetime], now: datetime) -> bool:
    """A record is live only while ``now < expire``."""
    return expire is None or not now < expire

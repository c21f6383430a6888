"""Controllable clock."""

from datetime import datetime, timedelta


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        """Start at ``now``."""
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += timedelta(seconds=seconds)

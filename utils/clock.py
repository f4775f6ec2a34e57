"""
utils/clock.py  –  Injectable time source

Services take a ``clock`` callable instead of calling ``datetime`` directly,
so tests can pin "now" and reconcile against a known date.
All timestamps are naive UTC, matching the DateTime columns.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """Clock that returns a set time until moved."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

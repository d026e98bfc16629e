from datetime import datetime, timedelta

from django.utils import timezone


class SystemClock:
    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, start: datetime | None = None):
        self._now = start or timezone.now()

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime):
        self._now = moment

    def advance(self, **delta):
        self._now = self._now + timedelta(**delta)
        return self._now

import datetime as dt

from intelliconsult.booking.adapters.datetime_helpers import resolve_timezone


class SystemClock:
    """Wall clock in the clinic's timezone, returned as a naive local datetime.

    Appointment dates and times are stored timezone-naive in clinic-local time,
    so "now" is compared in the same frame.
    """

    def __init__(self, clinic_timezone: str = "Asia/Kolkata") -> None:
        self._tz = resolve_timezone(clinic_timezone)

    def now(self) -> dt.datetime:
        return dt.datetime.now(self._tz).replace(tzinfo=None)


class FixedClock:
    """Clock pinned to a given instant. Move it with ``advance``."""

    def __init__(self, now: dt.datetime) -> None:
        self._now = now

    def now(self) -> dt.datetime:
        return self._now

    def advance(self, delta: dt.timedelta) -> None:
        self._now += delta

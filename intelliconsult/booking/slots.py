import datetime as dt
from collections.abc import Iterator

from loguru import logger

from intelliconsult.booking.ports import (
    AppointmentStoreProtocol,
    ClockProtocol,
    ProfileStoreProtocol,
)
from intelliconsult.domain.exceptions import DoctorNotFoundError
from intelliconsult.domain.models import SLOT_HOLDING_STATUSES, Doctor, Slot

DEFAULT_SLOT_MINUTES = 60
DEFAULT_HORIZON_DAYS = 14


class SlotCatalog:
    """Derives a doctor's bookable slots from working hours and the ledger.

    Nothing is cached: every call re-reads the doctor profile and the
    appointments currently holding slots.
    """

    def __init__(
        self,
        profiles: ProfileStoreProtocol,
        appointments: AppointmentStoreProtocol,
        clock: ClockProtocol,
        *,
        slot_minutes: int = DEFAULT_SLOT_MINUTES,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
    ) -> None:
        if slot_minutes <= 0 or horizon_days <= 0:
            raise ValueError("slot_minutes and horizon_days must be positive")
        self._profiles = profiles
        self._appointments = appointments
        self._clock = clock
        self._slot_length = dt.timedelta(minutes=slot_minutes)
        self._horizon_days = horizon_days

    async def available_slots(self, doctor_id: str, from_date: dt.date | None = None) -> list[Slot]:
        doctor = await self._profiles.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFoundError(doctor_id)

        if not doctor.bookable:
            logger.info("Doctor {} is not bookable; offering no slots", doctor_id)
            return []

        now = self._clock.now()
        start_date, end_date = self._window(now.date(), from_date)

        held = await self._appointments.list_appointments(
            doctor_id=doctor_id,
            statuses=SLOT_HOLDING_STATUSES,
            from_date=start_date,
        )
        taken = {(a.date, a.time) for a in held}

        slots = [
            slot
            for slot in self._schedule(doctor, start_date, end_date)
            if (slot.date, slot.time) not in taken and slot.starts_at >= now
        ]
        logger.debug("Doctor {} has {} open slot(s) from {}", doctor_id, len(slots), start_date)
        return slots

    def is_offered(self, doctor: Doctor, date: dt.date, time: dt.time) -> bool:
        """Whether the doctor's schedule offers ``(date, time)`` right now.

        Checks working hours, slot grid, blocked times, the booking horizon and
        the past. Does not look at existing bookings; the store enforces that.
        """
        now = self._clock.now()
        start_date, end_date = self._window(now.date())
        if not start_date <= date < end_date:
            return False
        if dt.datetime.combine(date, time) < now:
            return False
        return any(slot.time == time for slot in self._day_slots(doctor, date))

    def _window(
        self, today: dt.date, from_date: dt.date | None = None
    ) -> tuple[dt.date, dt.date]:
        """Bookable dates as ``[start, end)``; the horizon always counts from today."""
        start = max(from_date, today) if from_date else today
        return start, today + dt.timedelta(days=self._horizon_days)

    def _schedule(self, doctor: Doctor, start_date: dt.date, end_date: dt.date) -> Iterator[Slot]:
        date = start_date
        while date < end_date:
            yield from self._day_slots(doctor, date)
            date += dt.timedelta(days=1)

    def _day_slots(self, doctor: Doctor, date: dt.date) -> Iterator[Slot]:
        day = doctor.working_day(date)
        if day is None:
            return

        current = dt.datetime.combine(date, day.start)
        end = dt.datetime.combine(date, day.end)
        while current < end:
            slot_time = current.time()
            if not any(block.covers(date, slot_time) for block in doctor.blocked_times):
                yield Slot(date=date, time=slot_time)
            current += self._slot_length

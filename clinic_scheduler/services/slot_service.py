import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, time, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from clinic_scheduler.core.clock import Clock, clinic_now
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import ValidationError
from clinic_scheduler.models import Appointment
from clinic_scheduler.schemas import SlotAvailability

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


# ============== Time helpers ==============

def parse_hhmm(value: str | time) -> time:
    """Parse ``"HH:MM"`` (or ``"HH:MM:SS"``) into a ``time``."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        parts = [int(p) for p in str(value).strip().split(":")]
        return time(parts[0], parts[1] if len(parts) > 1 else 0)
    except (ValueError, IndexError):
        raise ValidationError(f"'{value}' is not a valid time. Please use a format like 10:30.")


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


# ============== Business hours ==============

@dataclass(frozen=True)
class DayHours:
    start: time
    end: time


class BusinessHours:
    """Weekday -> opening window, ``None`` meaning closed."""

    def __init__(self, schedule: dict[str, DayHours | None]):
        self.schedule = {day: schedule.get(day) for day in WEEKDAYS}

    @classmethod
    def from_config(cls, raw: dict[str, str]) -> "BusinessHours":
        schedule: dict[str, DayHours | None] = {}
        for day, window in raw.items():
            day = day.strip().lower()
            if day not in WEEKDAYS:
                raise ValueError(f"Unknown weekday in business hours: {day}")
            if not window or window.strip().lower() == "closed":
                schedule[day] = None
                continue
            start, _, end = window.partition("-")
            hours = DayHours(parse_hhmm(start), parse_hhmm(end))
            if _minutes(hours.end) <= _minutes(hours.start):
                raise ValueError(f"Business hours for {day} end before they start: {window}")
            schedule[day] = hours
        return cls(schedule)

    def for_date(self, target_date: date) -> DayHours | None:
        return self.schedule[WEEKDAYS[target_date.weekday()]]

    def is_open(self, target_date: date) -> bool:
        return self.for_date(target_date) is not None


# ============== Pure slot arithmetic ==============

def build_grid(hours: DayHours, granularity: int) -> list[time]:
    """Every slot start between opening and closing at ``granularity`` minutes."""
    grid = []
    current = _minutes(hours.start)
    closing = _minutes(hours.end)
    while current + granularity <= closing:
        grid.append(_from_minutes(current))
        current += granularity
    return grid


def occupied_slots(grid: Iterable[time], bookings: Iterable[tuple[time, int]], granularity: int) -> set[time]:
    """Grid slots overlapped by any ``(start, duration_minutes)`` booking."""
    occupied = set()
    ranges = [(_minutes(start), _minutes(start) + max(duration, 1)) for start, duration in bookings]
    for slot in grid:
        slot_start = _minutes(slot)
        slot_end = slot_start + granularity
        for start, end in ranges:
            if start < slot_end and slot_start < end:
                occupied.add(slot)
                break
    return occupied


def free_starts(
    grid: Sequence[time],
    occupied: set[time],
    duration: int,
    granularity: int,
    not_after: time | None = None,
) -> list[time]:
    """Starts whose whole ``duration`` fits on unoccupied grid slots.

    A booking of ``duration`` minutes needs ``ceil(duration / granularity)``
    consecutive free slots. Starts at or before ``not_after`` are dropped.
    """
    needed = max(1, -(-duration // granularity))
    available = {_minutes(t) for t in grid if t not in occupied}
    result = []
    for slot in grid:
        if not_after is not None and _minutes(slot) <= _minutes(not_after):
            continue
        if all(_minutes(slot) + i * granularity in available for i in range(needed)):
            result.append(slot)
    return result


# ============== Availability engine ==============

class SlotService:
    """
    Availability engine.

    Derives bookable start times for a date from business hours and the
    non-cancelled appointments already on the calendar. Both the booking
    core and the waitlist reconciler go through this class.
    """

    def __init__(
        self,
        db: AsyncSession,
        hours: BusinessHours | None = None,
        clock: Clock = clinic_now,
        granularity: int | None = None,
    ):
        self.db = db
        self.hours = hours or BusinessHours.from_config(settings.BUSINESS_HOURS)
        self.clock = clock
        self.granularity = granularity or settings.SLOT_GRANULARITY_MINUTES

    async def load_day_appointments(
        self,
        target_date: date,
        dentist_id: int | None = None,
        exclude_appointment_id: int | None = None,
        lock: bool = False,
    ) -> list[Appointment]:
        """
        Non-cancelled appointments for a day, optionally for one dentist.

        Args:
            target_date: Day to load
            dentist_id: Restrict to this dentist when given
            exclude_appointment_id: Leave this appointment out (used when moving it)
            lock: Take row locks (``SELECT ... FOR UPDATE``)
        """
        query = select(Appointment).where(
            Appointment.date == target_date,
            Appointment.status != "cancelled",
        )
        if dentist_id is not None:
            query = query.where(Appointment.dentist_id == dentist_id)
        if exclude_appointment_id is not None:
            query = query.where(Appointment.id != exclude_appointment_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.db.execute(query.order_by(Appointment.time))
        return list(result.scalars().all())

    def free_slots(
        self,
        target_date: date,
        appointments: Iterable[Appointment],
        duration_minutes: int | None = None,
    ) -> list[str]:
        """Free ``HH:MM`` starts for ``target_date`` given its appointments."""
        hours = self.hours.for_date(target_date)
        if hours is None:
            return []

        now = self.clock()
        if target_date < now.date():
            return []
        not_after = now.time() if target_date == now.date() else None

        grid = build_grid(hours, self.granularity)
        occupied = occupied_slots(
            grid,
            [(a.time, a.duration_minutes or settings.DEFAULT_APPOINTMENT_MINUTES) for a in appointments],
            self.granularity,
        )
        duration = duration_minutes or self.granularity
        return [format_hhmm(t) for t in free_starts(grid, occupied, duration, self.granularity, not_after)]

    async def compute_slots(
        self,
        target_date: date,
        dentist_id: int | None = None,
        duration_minutes: int | None = None,
        exclude_appointment_id: int | None = None,
    ) -> SlotAvailability:
        """
        Get every bookable start time on a date.

        Returns:
            SlotAvailability with ``available`` false when nothing is free
        """
        appointments = []
        if self.hours.is_open(target_date):
            appointments = await self.load_day_appointments(
                target_date, dentist_id, exclude_appointment_id=exclude_appointment_id
            )
        slots = self.free_slots(target_date, appointments, duration_minutes)
        logger.debug("%d free slots on %s (dentist=%s)", len(slots), target_date, dentist_id)
        return SlotAvailability(date=target_date, dentist_id=dentist_id, available=bool(slots), slots=slots)

    async def is_slot_free(
        self,
        target_date: date,
        slot_time: str | time,
        dentist_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> bool:
        availability = await self.compute_slots(target_date, dentist_id, duration_minutes)
        return format_hhmm(parse_hhmm(slot_time)) in availability.slots

    async def suggest_slots(
        self,
        start_date: date | None = None,
        days: int | None = None,
        per_day: int | None = None,
        dentist_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> dict[date, list[str]]:
        """Up to ``per_day`` free slots on each of the next ``days`` open days."""
        days = days or settings.SUGGESTION_DAYS
        per_day = per_day or settings.SUGGESTIONS_PER_DAY
        current = start_date or self.clock().date()

        suggestions: dict[date, list[str]] = {}
        # Look at most two weeks ahead for enough open days
        for _ in range(14):
            if len(suggestions) >= days:
                break
            if self.hours.is_open(current):
                availability = await self.compute_slots(current, dentist_id, duration_minutes)
                if availability.slots:
                    suggestions[current] = availability.slots[:per_day]
            current += timedelta(days=1)
        return suggestions


import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func

from clinic_scheduler.core.clock import Clock, clinic_now
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import (
    AlreadyTerminal,
    DuplicateConflict,
    NotFoundOrForbidden,
    SlotUnavailable,
    ValidationError,
)
from clinic_scheduler.models import Appointment, Dentist, Service
from clinic_scheduler.schemas import AppointmentRead
from clinic_scheduler.services.slot_service import SlotService, format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)

# Used only on backends without advisory locks (SQLite); one registry per event loop
_window_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict]" = weakref.WeakKeyDictionary()


def _window_lock_key(target_date: date, dentist_id: int | None) -> int:
    return target_date.toordinal() * 1_000_000 + (dentist_id or 0)


@asynccontextmanager
async def _local_window_lock(window: tuple[date, int | None]):
    # Entries are [lock, users]; the last user out removes the window
    registry = _window_locks.setdefault(asyncio.get_running_loop(), {})
    entry = registry.setdefault(window, [asyncio.Lock(), 0])
    entry[1] += 1
    try:
        async with entry[0]:
            yield
    finally:
        entry[1] -= 1
        if not entry[1]:
            del registry[window]


class BookingService:
    """
    Booking transaction core.

    ``book``, ``cancel`` and ``reschedule`` are the only code paths that
    write appointments. Each one locks the affected ``(date, dentist)``
    window first, re-reads the day under that lock, then decides and commits.
    """

    def __init__(self, db: AsyncSession, slots: SlotService | None = None, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock
        self.slots = slots or SlotService(db, clock=clock)

    # ============== Locking ==============

    @asynccontextmanager
    async def _lock_windows(self, *windows: tuple[date, int | None]):
        """
        Serialize work on the given ``(date, dentist_id)`` windows.

        On PostgreSQL a transaction-scoped advisory lock is taken per window
        (released by commit/rollback), so the window is guarded even when the
        day has no rows yet for ``FOR UPDATE`` to lock. Elsewhere a
        process-local lock per window stands in.
        """
        ordered = sorted(set(windows), key=lambda w: (w[0], w[1] or 0))

        if self.db.get_bind().dialect.name == "postgresql":
            for target_date, dentist_id in ordered:
                await self.db.execute(select(func.pg_advisory_xact_lock(_window_lock_key(target_date, dentist_id))))
            yield
            return

        async with AsyncExitStack() as stack:
            for window in ordered:
                await stack.enter_async_context(_local_window_lock(window))
            yield

    # ============== Lookups ==============

    async def _get_service(self, service_id: int | None) -> Service | None:
        if service_id is None:
            return None
        service = await self.db.get(Service, service_id)
        if not service:
            raise ValidationError(f"Service not found: {service_id}")
        return service

    async def _check_dentist(self, dentist_id: int | None) -> None:
        if dentist_id is not None and not await self.db.get(Dentist, dentist_id):
            raise ValidationError(f"Dentist not found: {dentist_id}")

    async def _get_owned(self, patient_id: int, appointment_id: int, lock: bool = False) -> Appointment:
        query = select(Appointment).where(Appointment.id == appointment_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        appointment = result.scalar_one_or_none()

        if not appointment or appointment.patient_id != patient_id:
            raise NotFoundOrForbidden("Appointment not found or you do not have permission to change it.")
        return appointment

    async def _find_duplicate(
        self,
        patient_id: int,
        service_id: int | None,
        target_date: date,
        exclude_appointment_id: int | None = None,
    ) -> Appointment | None:
        # Without a service there is nothing to compare against
        if service_id is None:
            return None
        query = select(Appointment).where(
            Appointment.patient_id == patient_id,
            Appointment.service_id == service_id,
            Appointment.date == target_date,
            Appointment.status != "cancelled",
        )
        if exclude_appointment_id is not None:
            query = query.where(Appointment.id != exclude_appointment_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    def _duplicate_error(self, existing: Appointment, service_name: str | None) -> DuplicateConflict:
        service_name = service_name or "this service"
        return DuplicateConflict(
            f"You already have an appointment for {service_name} on {existing.date.isoformat()} "
            f"at {format_hhmm(existing.time)}. Please choose a different date or service.",
            existing=AppointmentRead.model_validate(existing),
        )

    def _validate_date(self, target_date: date) -> None:
        if target_date < self.clock().date():
            raise ValidationError(f"{target_date.isoformat()} is in the past. Please choose a future date.")

    @staticmethod
    def _unavailable_error(target_date: date, slot: str, free: list[str]) -> SlotUnavailable:
        if free:
            message = (
                f"The time slot {slot} is not available on {target_date.isoformat()}. "
                f"Available slots: {', '.join(free)}"
            )
        else:
            message = f"The time slot {slot} is not available on {target_date.isoformat()} and the day is fully booked."
        return SlotUnavailable(message, slots=free)

    # ============== Operations ==============

    async def book(
        self,
        patient_id: int,
        target_date: date,
        slot_time: str,
        service_id: int | None = None,
        dentist_id: int | None = None,
        notes: str | None = None,
    ) -> int:
        """
        Create a scheduled appointment.

        Args:
            patient_id: Who the appointment is for
            target_date: Day of the appointment
            slot_time: Start time as ``HH:MM``
            service_id: Optional service, drives the duration
            dentist_id: Optional dentist, narrows the lock and conflict window
            notes: Free text stored on the appointment

        Returns:
            The new appointment id

        Raises:
            ValidationError, DuplicateConflict, SlotUnavailable
        """
        self._validate_date(target_date)
        start = parse_hhmm(slot_time)
        label = format_hhmm(start)
        service = await self._get_service(service_id)
        await self._check_dentist(dentist_id)
        service_name = service.name if service else None
        duration = (service.duration_minutes if service else None) or settings.DEFAULT_APPOINTMENT_MINUTES

        try:
            async with self._lock_windows((target_date, dentist_id)):
                day = await self.slots.load_day_appointments(target_date, dentist_id, lock=True)

                existing = await self._find_duplicate(patient_id, service_id, target_date)
                if existing:
                    raise self._duplicate_error(existing, service_name)

                free = self.slots.free_slots(target_date, day, duration)
                if label not in free:
                    raise self._unavailable_error(target_date, label, free)

                appointment = Appointment(
                    patient_id=patient_id,
                    dentist_id=dentist_id,
                    service_id=service_id,
                    date=target_date,
                    time=start,
                    duration_minutes=duration,
                    status="scheduled",
                    notes=notes,
                )
                self.db.add(appointment)
                await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find_duplicate(patient_id, service_id, target_date)
            if existing:
                raise self._duplicate_error(existing, service_name)
            raise
        except BaseException:
            await self.db.rollback()
            raise

        logger.info(
            "Booked appointment %s for patient %s on %s at %s (dentist=%s)",
            appointment.id, patient_id, target_date, label, dentist_id,
        )
        return appointment.id

    async def cancel(self, patient_id: int, appointment_id: int, reason: str | None = None) -> AppointmentRead:
        """Cancel an appointment the patient owns. A second cancel raises ``AlreadyTerminal``."""
        appointment = await self._get_owned(patient_id, appointment_id)

        try:
            async with self._lock_windows((appointment.date, appointment.dentist_id)):
                appointment = await self._get_owned(patient_id, appointment_id, lock=True)

                if appointment.status == "cancelled" or appointment.has_been_cancelled:
                    raise AlreadyTerminal("This appointment has already been cancelled.")
                if appointment.status == "completed":
                    raise AlreadyTerminal("This appointment has already been completed and cannot be cancelled.")

                appointment.status = "cancelled"
                appointment.has_been_cancelled = True
                appointment.cancel_count = (appointment.cancel_count or 0) + 1
                if reason:
                    appointment.notes = f"{appointment.notes or ''}\nCancellation reason: {reason}".lstrip("\n")
                await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

        logger.info("Cancelled appointment %s for patient %s", appointment_id, patient_id)
        return AppointmentRead.model_validate(appointment)

    async def reschedule(
        self,
        patient_id: int,
        appointment_id: int,
        new_date: date,
        new_time: str,
    ) -> AppointmentRead:
        """
        Move an appointment in place to a new date/time.

        The appointment keeps its id, dentist, service and duration; its old
        slot is not counted against the new one.
        """
        self._validate_date(new_date)
        start = parse_hhmm(new_time)
        label = format_hhmm(start)
        appointment = await self._get_owned(patient_id, appointment_id)
        old_window = (appointment.date, appointment.dentist_id)
        service_id = appointment.service_id
        service = await self.db.get(Service, service_id) if service_id is not None else None
        service_name = service.name if service else None

        try:
            async with self._lock_windows(old_window, (new_date, appointment.dentist_id)):
                appointment = await self._get_owned(patient_id, appointment_id, lock=True)

                if appointment.status == "cancelled" or appointment.has_been_cancelled:
                    raise AlreadyTerminal("This appointment has been cancelled and cannot be rescheduled.")
                if appointment.status == "completed":
                    raise AlreadyTerminal("This appointment has already been completed and cannot be rescheduled.")
                if appointment.date == new_date and format_hhmm(appointment.time) == label:
                    raise ValidationError(f"Your appointment is already on {new_date.isoformat()} at {label}.")

                existing = await self._find_duplicate(
                    patient_id, service_id, new_date, exclude_appointment_id=appointment.id
                )
                if existing:
                    raise self._duplicate_error(existing, service_name)

                day = await self.slots.load_day_appointments(
                    new_date, appointment.dentist_id, exclude_appointment_id=appointment.id, lock=True
                )
                free = self.slots.free_slots(new_date, day, appointment.duration_minutes)
                if label not in free:
                    raise self._unavailable_error(new_date, label, free)

                appointment.date = new_date
                appointment.time = start
                appointment.status = "scheduled"
                appointment.has_been_rescheduled = True
                appointment.reschedule_count = (appointment.reschedule_count or 0) + 1
                await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find_duplicate(
                patient_id, service_id, new_date, exclude_appointment_id=appointment_id
            )
            if existing:
                raise self._duplicate_error(existing, service_name)
            raise
        except BaseException:
            await self.db.rollback()
            raise

        logger.info(
            "Rescheduled appointment %s for patient %s from %s to %s %s",
            appointment_id, patient_id, old_window[0], new_date, label,
        )
        return AppointmentRead.model_validate(appointment)

    # ============== Read-only ==============

    async def get_appointment(self, patient_id: int, appointment_id: int) -> AppointmentRead:
        return AppointmentRead.model_validate(await self._get_owned(patient_id, appointment_id))

    async def list_appointments(self, patient_id: int, limit: int = 10) -> list[AppointmentRead]:
        """Most recent appointments first, any status."""
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.patient_id == patient_id)
            .order_by(Appointment.date.desc(), Appointment.time.desc())
            .limit(limit)
        )
        return [AppointmentRead.model_validate(a) for a in result.scalars().all()]

    async def upcoming_appointments(self, patient_id: int) -> list[AppointmentRead]:
        result = await self.db.execute(
            select(Appointment)
            .where(
                Appointment.patient_id == patient_id,
                Appointment.status == "scheduled",
                Appointment.date >= self.clock().date(),
            )
            .order_by(Appointment.date, Appointment.time)
        )
        return [AppointmentRead.model_validate(a) for a in result.scalars().all()]

"""Tests for the booking transaction core."""

import asyncio
from datetime import date

import pytest
from sqlalchemy import select

from clinic_scheduler.core.errors import (
    AlreadyTerminal,
    DuplicateConflict,
    NotFoundOrForbidden,
    SlotUnavailable,
    ValidationError,
)
from clinic_scheduler.models import Appointment
from clinic_scheduler.services import booking_service
from clinic_scheduler.services.booking_service import BookingService

from conftest import NEXT_MONDAY, SATURDAY, TUESDAY


async def _load(session_factory, appointment_id: int) -> Appointment:
    async with session_factory() as session:
        return await session.get(Appointment, appointment_id)


# ── Tests: book ──────────────────────────────────────────────────────


class TestBook:
    async def test_books_free_slot(self, db, seeded, clock, session_factory):
        appointment_id = await BookingService(db, clock=clock).book(
            seeded.ana, NEXT_MONDAY, "09:00", dentist_id=seeded.smith
        )

        appointment = await _load(session_factory, appointment_id)
        assert appointment.status == "scheduled"
        assert appointment.date == NEXT_MONDAY
        assert appointment.time.strftime("%H:%M") == "09:00"
        assert appointment.duration_minutes == 30

    async def test_taken_slot_lists_what_is_still_free(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        await booking.book(seeded.ana, NEXT_MONDAY, "09:00", dentist_id=seeded.smith)

        with pytest.raises(SlotUnavailable) as exc_info:
            await booking.book(seeded.ben, NEXT_MONDAY, "09:00", dentist_id=seeded.smith)

        assert "09:00" not in exc_info.value.slots
        assert "09:30" in exc_info.value.slots

    async def test_same_slot_with_another_dentist(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        await booking.book(seeded.ana, NEXT_MONDAY, "09:00", dentist_id=seeded.smith)
        assert await booking.book(seeded.ben, NEXT_MONDAY, "09:00", dentist_id=seeded.ruiz)

    async def test_duplicate_service_same_day(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        first = await booking.book(seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning)

        with pytest.raises(DuplicateConflict) as exc_info:
            await booking.book(seeded.ana, NEXT_MONDAY, "14:00", service_id=seeded.cleaning)

        assert exc_info.value.existing.id == first
        assert "Teeth Cleaning" in exc_info.value.message
        assert "09:00" in exc_info.value.message

    async def test_long_service_blocks_overlapping_start(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        await booking.book(seeded.ana, NEXT_MONDAY, "10:00", service_id=seeded.whitening, dentist_id=seeded.smith)

        with pytest.raises(SlotUnavailable):
            await booking.book(seeded.ben, NEXT_MONDAY, "10:30", dentist_id=seeded.smith)

    async def test_past_date(self, db, seeded, clock):
        with pytest.raises(ValidationError):
            await BookingService(db, clock=clock).book(seeded.ana, date(2026, 2, 27), "09:00")

    async def test_closed_day(self, db, seeded, clock):
        with pytest.raises(SlotUnavailable) as exc_info:
            await BookingService(db, clock=clock).book(seeded.ana, SATURDAY, "10:00")
        assert exc_info.value.slots == []

    async def test_unknown_service(self, db, seeded, clock):
        with pytest.raises(ValidationError):
            await BookingService(db, clock=clock).book(seeded.ana, NEXT_MONDAY, "09:00", service_id=999)

    async def test_concurrent_bookings_for_one_slot(self, session_factory, seeded, clock):
        async def attempt(patient_id):
            async with session_factory() as session:
                try:
                    return await BookingService(session, clock=clock).book(
                        patient_id, NEXT_MONDAY, "11:00", dentist_id=seeded.smith
                    )
                except SlotUnavailable:
                    return None

        results = await asyncio.gather(attempt(seeded.ana), attempt(seeded.ben))

        assert sum(1 for r in results if r) == 1
        async with session_factory() as session:
            rows = await session.execute(
                select(Appointment).where(Appointment.date == NEXT_MONDAY, Appointment.status == "scheduled")
            )
            assert len(rows.scalars().all()) == 1

    async def test_window_locks_are_released_after_use(self, session_factory, seeded, clock):
        async def attempt(patient_id, day):
            async with session_factory() as session:
                await BookingService(session, clock=clock).book(patient_id, day, "11:00")

        await asyncio.gather(
            attempt(seeded.ana, NEXT_MONDAY),
            attempt(seeded.ben, NEXT_MONDAY),
            attempt(seeded.ben, TUESDAY),
            return_exceptions=True,
        )

        assert booking_service._window_locks.get(asyncio.get_running_loop(), {}) == {}


# ── Tests: cancel ────────────────────────────────────────────────────


class TestCancel:
    async def test_cancel_frees_the_slot(self, db, seeded, clock, session_factory):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning)

        cancelled = await booking.cancel(seeded.ana, appointment_id, reason="Feeling better")

        assert cancelled.status == "cancelled"
        assert cancelled.cancel_count == 1
        assert "Cancellation reason: Feeling better" in cancelled.notes
        # Same service, same day, same time is bookable again
        assert await booking.book(seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning)

    async def test_second_cancel_is_refused(self, db, seeded, clock, session_factory):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00")
        await booking.cancel(seeded.ana, appointment_id)

        with pytest.raises(AlreadyTerminal):
            await booking.cancel(seeded.ana, appointment_id)

        appointment = await _load(session_factory, appointment_id)
        assert appointment.cancel_count == 1

    async def test_other_patients_appointment(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00")

        with pytest.raises(NotFoundOrForbidden):
            await booking.cancel(seeded.ben, appointment_id)

    async def test_missing_appointment(self, db, seeded, clock):
        with pytest.raises(NotFoundOrForbidden):
            await BookingService(db, clock=clock).cancel(seeded.ana, 12345)


# ── Tests: reschedule ────────────────────────────────────────────────


class TestReschedule:
    async def test_moves_in_place(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning)

        moved = await booking.reschedule(seeded.ana, appointment_id, TUESDAY, "15:00")

        assert moved.id == appointment_id
        assert moved.date == TUESDAY
        assert moved.time_label == "15:00"
        assert moved.has_been_rescheduled
        assert moved.reschedule_count == 1

    async def test_own_slot_does_not_block_the_move(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(
            seeded.ana, NEXT_MONDAY, "10:00", service_id=seeded.whitening, dentist_id=seeded.smith
        )
        # 10:30-11:30 overlaps the appointment's own 10:00-11:00
        moved = await booking.reschedule(seeded.ana, appointment_id, NEXT_MONDAY, "10:30")
        assert moved.time_label == "10:30"

    async def test_into_occupied_slot(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        await booking.book(seeded.ben, TUESDAY, "15:00", dentist_id=seeded.smith)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00", dentist_id=seeded.smith)

        with pytest.raises(SlotUnavailable):
            await booking.reschedule(seeded.ana, appointment_id, TUESDAY, "15:00")

    async def test_onto_day_with_same_service(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        await booking.book(seeded.ana, TUESDAY, "09:00", service_id=seeded.cleaning)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning)

        with pytest.raises(DuplicateConflict):
            await booking.reschedule(seeded.ana, appointment_id, TUESDAY, "11:00")

    async def test_cancelled_appointment(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00")
        await booking.cancel(seeded.ana, appointment_id)

        with pytest.raises(AlreadyTerminal):
            await booking.reschedule(seeded.ana, appointment_id, TUESDAY, "10:00")

    async def test_same_date_and_time(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        appointment_id = await booking.book(seeded.ana, NEXT_MONDAY, "09:00")

        with pytest.raises(ValidationError):
            await booking.reschedule(seeded.ana, appointment_id, NEXT_MONDAY, "09:00")


# ── Tests: history ───────────────────────────────────────────────────


class TestHistory:
    async def test_lists_newest_first_and_upcoming_only_scheduled(self, db, seeded, clock):
        booking = BookingService(db, clock=clock)
        monday = await booking.book(seeded.ana, NEXT_MONDAY, "09:00")
        tuesday = await booking.book(seeded.ana, TUESDAY, "09:00")
        await booking.cancel(seeded.ana, tuesday)

        history = await booking.list_appointments(seeded.ana)
        assert [a.id for a in history] == [monday, tuesday]

        upcoming = await booking.upcoming_appointments(seeded.ana)
        assert [a.id for a in upcoming] == [monday]

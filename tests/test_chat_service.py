"""End-to-end dialogue tests through the LangGraph workflow."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from clinic_scheduler.models import Appointment
from clinic_scheduler.services.booking_service import BookingService
from clinic_scheduler.services.chat_service import ChatService
from clinic_scheduler.services.keyword_rules import refusal

from conftest import FRIDAY, NEXT_MONDAY


@pytest.fixture
def chat(db, clock):
    return ChatService(db, oracle=None, clock=clock)


class TestConversationLifecycle:
    async def test_start_conversation_greets(self, chat, seeded):
        conversation_id, greeting = await chat.start_conversation(seeded.ana)
        assert conversation_id
        assert greeting.startswith("Hello!")
        assert await chat.log.recent(conversation_id) == [{"role": "assistant", "content": greeting}]

    async def test_unknown_patient(self, chat, seeded):
        with pytest.raises(ValueError):
            await chat.start_conversation(9999)

    async def test_unknown_conversation(self, chat, seeded):
        with pytest.raises(ValueError):
            await chat.send_message(9999, "hello")


class TestBookingDialogue:
    async def test_date_then_slot_number(self, db, seeded, clock, oracle, session_factory):
        chat = ChatService(db, oracle=oracle, clock=clock)
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        first = await chat.send_message(conversation_id, "I want to book an appointment next Friday")

        assert first.intent == "book"
        assert first.missing_info == ["time"]
        assert first.available_slots[:2] == ["09:00", "09:30"]
        assert first.available_slots[-1] == "14:30"
        assert "Friday, March 6" in first.reply
        assert "2. 09:30" in first.reply

        second = await chat.send_message(conversation_id, "slot 2")

        assert second.appointment_id is not None
        assert second.reply == (
            f"Your appointment is booked for Friday, March 6 at 09:30. Appointment number: #{second.appointment_id}."
        )
        assert second.missing_info == []
        # The slot pick is resolved locally, only the first turn reaches the oracle
        assert oracle.extract.await_count == 1
        assert await chat.store.load(conversation_id) is None

        async with session_factory() as session:
            appointment = await session.get(Appointment, second.appointment_id)
            assert appointment.date == FRIDAY
            assert appointment.time.strftime("%H:%M") == "09:30"

    @pytest.mark.parametrize("message", ["first thing monday", "slot 2 on monday"])
    async def test_new_day_after_offer_reoffers_instead_of_booking(self, chat, seeded, message):
        conversation_id, _ = await chat.start_conversation(seeded.ana)
        await chat.send_message(conversation_id, "I want to book an appointment next Friday")

        reply = await chat.send_message(conversation_id, message)

        assert reply.appointment_id is None
        assert reply.reply.startswith("These times are free on Monday, March 9:")
        assert reply.missing_info == ["time"]
        assert (await chat.store.load(conversation_id)).pending_action.date == NEXT_MONDAY

    async def test_service_and_dentist_in_confirmation(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "Book a cleaning with Dr. Smith next Friday at 2:30 pm")

        assert reply.reply.startswith("Your appointment is booked for Friday, March 6 at 14:30")
        assert " for Teeth Cleaning with Dr. Sarah Smith." in reply.reply

    async def test_no_date_asks_with_suggestions(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "I want to book a cleaning")

        assert reply.reply.startswith("What day would you like to come in?")
        assert "- Monday, March 2: 09:00" in reply.reply
        assert reply.missing_info == ["date", "time"]

    async def test_past_date_is_refused(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "book a cleaning on 2026-02-20")

        assert reply.reply == "Friday, February 20 is in the past. Please choose today or a later date."
        assert reply.missing_info == ["date", "time"]

    async def test_taken_time_offers_what_is_left(self, chat, seeded, clock, db):
        await BookingService(db, clock=clock).book(seeded.ben, NEXT_MONDAY, "10:00")
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "I'd like to book Monday at 10:00")

        assert reply.reply.startswith("The time 10:00 is not available on Monday, March 9.")
        assert reply.missing_info == ["time"]
        assert "10:00" not in reply.available_slots

    async def test_spanish_offer(self, chat, seeded):
        conversation_id, greeting = await chat.start_conversation(seeded.ana, language="es")
        assert greeting.startswith("¡Hola!")

        reply = await chat.send_message(conversation_id, "Quiero reservar una cita para mañana")

        assert reply.reply.startswith("Estos horarios están libres el martes 3 de marzo:")
        assert reply.missing_info == ["time"]


class TestCancelDialogue:
    async def test_pick_from_listed_appointments(self, chat, seeded, clock, db):
        appointment_id = await BookingService(db, clock=clock).book(
            seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning
        )
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        first = await chat.send_message(conversation_id, "I want to cancel my appointment")
        assert first.reply == (
            "Which appointment would you like to cancel?\n"
            f"1. #{appointment_id} Monday, March 9 at 09:00 (Teeth Cleaning)"
        )
        assert first.missing_info == ["appointment_id"]

        second = await chat.send_message(conversation_id, "the first one")
        assert second.reply == "Your appointment on Monday, March 9 at 09:00 has been cancelled."
        assert second.appointment_id == appointment_id

    async def test_bare_cancel_lists_appointments(self, chat, seeded, clock, db):
        appointment_id = await BookingService(db, clock=clock).book(seeded.ana, NEXT_MONDAY, "09:00")
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "I want to cancel")

        assert reply.intent == "cancel"
        assert f"1. #{appointment_id} Monday, March 9 at 09:00" in reply.reply

    async def test_bare_cancel_drops_pending_booking(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)
        await chat.send_message(conversation_id, "I want to book a cleaning")

        reply = await chat.send_message(conversation_id, "cancel")

        assert reply.reply.startswith("No problem")
        assert await chat.store.load(conversation_id) is None

    async def test_nothing_to_cancel(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "Please cancel my booking")

        assert reply.reply == "You don't have any upcoming appointments."
        assert await chat.store.load(conversation_id) is None


class TestRescheduleDialogue:
    async def test_move_by_id_date_and_time(self, chat, seeded, clock, db):
        appointment_id = await BookingService(db, clock=clock).book(seeded.ana, NEXT_MONDAY, "09:00")
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        first = await chat.send_message(conversation_id, f"I need to reschedule appointment #{appointment_id}")
        assert first.reply.startswith("What new date would you like for your appointment on Monday, March 9 at 09:00?")

        second = await chat.send_message(conversation_id, "Friday at 11:00")
        assert second.reply == "Your appointment has been moved to Friday, March 6 at 11:00."
        assert second.appointment_id == appointment_id


class TestOtherTurns:
    async def test_out_of_scope_skips_the_oracle(self, db, seeded, clock, oracle):
        chat = ChatService(db, oracle=oracle, clock=clock)
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "Who won the football game?")

        assert reply.out_of_scope
        assert reply.reply == refusal("en")
        oracle.classify.assert_not_awaited()
        oracle.extract.assert_not_awaited()

    async def test_abandon_clears_pending_request(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)
        await chat.send_message(conversation_id, "I want to book a cleaning")
        assert await chat.store.load(conversation_id) is not None

        reply = await chat.send_message(conversation_id, "never mind")

        assert reply.reply.startswith("No problem")
        assert await chat.store.load(conversation_id) is None

    async def test_history_lists_all_appointments(self, chat, seeded, clock, db):
        booking = BookingService(db, clock=clock)
        kept = await booking.book(seeded.ana, NEXT_MONDAY, "09:00", service_id=seeded.cleaning)
        dropped = await booking.book(seeded.ana, FRIDAY, "10:00")
        await booking.cancel(seeded.ana, dropped)
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "show my appointments")

        assert reply.intent == "history"
        assert f"- #{kept} Monday, March 9 at 09:00 (Teeth Cleaning)" in reply.reply
        assert f"- #{dropped} Friday, March 6 at 10:00 [cancelled]" in reply.reply

    async def test_question_uses_oracle_answer(self, db, seeded, clock, oracle):
        chat = ChatService(db, oracle=oracle, clock=clock)
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "What are your opening hours?")

        assert reply.reply == "We are open Monday to Friday."
        assert reply.intent == "question"

    async def test_question_without_oracle_falls_back(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)

        reply = await chat.send_message(conversation_id, "Do you take insurance?")

        assert reply.reply.startswith("I can help you book, cancel or reschedule")

    async def test_database_error_keeps_previous_state(self, chat, seeded):
        conversation_id, _ = await chat.start_conversation(seeded.ana)
        await chat.send_message(conversation_id, "I want to book a cleaning")
        before = await chat.store.load(conversation_id)

        failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("database is locked")))
        with patch.object(chat.slots, "compute_slots", failing):
            with pytest.raises(OperationalError):
                await chat.send_message(conversation_id, "next Friday")

        assert await chat.store.load(conversation_id) == before

"""Tests for the deterministic date/time grammar."""

from datetime import date

import pytest

from clinic_scheduler.services.date_parser import (
    parse_appointment_reference,
    parse_date,
    parse_slot_selection,
    parse_time,
)

from conftest import TODAY

# TODAY is Monday 2026-03-02


class TestParseDateEnglish:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("today please", date(2026, 3, 2)),
            ("tomorrow", date(2026, 3, 3)),
            ("the day after tomorrow", date(2026, 3, 4)),
            ("next Friday", date(2026, 3, 6)),
            ("on friday", date(2026, 3, 6)),
            ("monday", date(2026, 3, 9)),
            ("this monday", date(2026, 3, 2)),
            ("in 3 days", date(2026, 3, 5)),
            ("in two weeks", date(2026, 3, 16)),
            ("next week", date(2026, 3, 9)),
            ("March 10", date(2026, 3, 10)),
            ("the 10th of march", date(2026, 3, 10)),
            ("first of april", date(2026, 4, 1)),
            ("april second", date(2026, 4, 2)),
            ("2026-03-12", date(2026, 3, 12)),
        ],
    )
    def test_phrases(self, message, expected):
        assert parse_date(message, TODAY) == expected

    def test_month_already_passed_rolls_to_next_year(self):
        assert parse_date("February 10", TODAY) == date(2027, 2, 10)

    def test_past_iso_date_is_returned_as_is(self):
        assert parse_date("2026-02-20", TODAY) == date(2026, 2, 20)

    def test_no_date(self):
        assert parse_date("I want a cleaning", TODAY) is None

    def test_time_is_not_read_as_a_date(self):
        assert parse_date("at 10.30", TODAY) is None


class TestParseDateSpanish:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("hoy", date(2026, 3, 2)),
            ("mañana", date(2026, 3, 3)),
            ("pasado mañana", date(2026, 3, 4)),
            ("el viernes", date(2026, 3, 6)),
            ("dentro de 3 días", date(2026, 3, 5)),
            ("5 de marzo", date(2026, 3, 5)),
            ("primero de abril", date(2026, 4, 1)),
        ],
    )
    def test_phrases(self, message, expected):
        assert parse_date(message, TODAY, "es") == expected

    def test_morning_is_not_tomorrow(self):
        assert parse_date("por la mañana", TODAY, "es") is None

    def test_numeric_dates_are_day_first(self):
        assert parse_date("10/03/2026", TODAY, "es") == date(2026, 3, 10)


class TestParseTime:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("10:30", "10:30"),
            ("10:30 am", "10:30"),
            ("2:30 pm", "14:30"),
            ("3pm", "15:00"),
            ("at 3", "15:00"),
            ("at 10", "10:00"),
            ("noon", "12:00"),
            ("a las 4 de la tarde", "16:00"),
            ("a las 10", "10:00"),
        ],
    )
    def test_phrases(self, message, expected):
        assert parse_time(message) == expected

    def test_no_time(self):
        assert parse_time("next friday") is None

    def test_day_count_is_not_a_time(self):
        assert parse_time("in 3 days") is None


class TestSlotSelection:
    SLOTS = ["09:00", "09:30", "10:00"]

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("slot 2", "09:30"),
            ("option #3", "10:00"),
            ("the first one", "09:00"),
            ("2", "09:30"),
            ("the last one", "10:00"),
            ("opción 1", "09:00"),
        ],
    )
    def test_selects_from_offered_slots(self, message, expected):
        assert parse_slot_selection(message, self.SLOTS) == expected

    def test_out_of_range(self):
        assert parse_slot_selection("slot 9", self.SLOTS) is None

    def test_nothing_offered(self):
        assert parse_slot_selection("slot 2", None) is None

    def test_ordinals_can_be_switched_off(self):
        assert parse_slot_selection("first thing monday", self.SLOTS) == "09:00"
        assert parse_slot_selection("first thing monday", self.SLOTS, ordinals=False) is None
        assert parse_slot_selection("the last one", self.SLOTS, ordinals=False) is None
        assert parse_slot_selection("slot 2 on monday", self.SLOTS, ordinals=False) == "09:30"


class TestAppointmentReference:
    def test_explicit_id(self):
        assert parse_appointment_reference("cancel appointment 42") == 42
        assert parse_appointment_reference("please move #7") == 7

    def test_position_in_listed_options(self):
        assert parse_appointment_reference("the second one", [5, 9]) == 9
        assert parse_appointment_reference("2", [5, 9]) == 9

    def test_bare_number_matching_a_listed_id(self):
        assert parse_appointment_reference("5", [5, 9]) == 5

    def test_nothing_to_resolve(self):
        assert parse_appointment_reference("cancel my appointment") is None

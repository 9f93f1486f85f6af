"""Tests for the scope filter and keyword intents."""

import pytest

from clinic_scheduler.services.keyword_rules import (
    detect_intent,
    is_abandonment,
    is_in_scope,
    normalize,
    refusal,
)


class TestScope:
    @pytest.mark.parametrize(
        "message",
        [
            "I need a dental cleaning",
            "Can I book an appointment with Dr. Smith?",
            "hi",
            "What did I have last time?",
            "Me duele una muela",
        ],
    )
    def test_in_scope(self, message):
        assert is_in_scope(message)

    @pytest.mark.parametrize(
        "message",
        [
            "Who won the football game yesterday?",
            "What's the capital of France?",
            "Give me a recipe for lasagna",
            "¿Qué tiempo hace? Quiero saber el clima",
        ],
    )
    def test_out_of_scope(self, message):
        assert not is_in_scope(message)

    def test_scope_keyword_wins_over_out_of_scope(self):
        assert is_in_scope("I hurt my tooth playing football")

    def test_refusal_is_localized(self):
        assert refusal("en").startswith("I don't have knowledge about it.")
        assert refusal("es").startswith("No tengo")
        assert refusal("fr") == refusal("en")


class TestDetectIntent:
    @pytest.mark.parametrize(
        "message, intent",
        [
            ("Please cancel my booking", "cancel"),
            ("I'd like to reschedule", "reschedule"),
            ("Can I move my appointment to Friday?", "reschedule"),
            ("show my appointments", "history"),
            ("I want to book a cleaning", "book"),
            ("Quiero cancelar mi cita", "cancel"),
            ("Quiero reservar una cita", "book"),
            ("mis citas", "history"),
            ("cancel", "cancel"),
            ("I want to cancel", "cancel"),
            ("I'd like to cancel, please", "cancel"),
            ("Cancelar", "cancel"),
        ],
    )
    def test_intents(self, message, intent):
        assert detect_intent(message) == intent

    def test_no_rule_fires(self):
        assert detect_intent("hello there") is None


class TestAbandonment:
    @pytest.mark.parametrize(
        "message",
        ["never mind", "Forget it!", "stop", "olvídalo", "I changed my mind", "cancel", "Cancel that.", "cancelar"],
    )
    def test_abandon_phrases(self, message):
        assert is_abandonment(message)

    def test_ordinary_reply_is_not_abandonment(self):
        assert not is_abandonment("book at 10")


def test_normalize_strips_accents():
    assert normalize("Miércoles MAÑANA") == "miercoles manana"

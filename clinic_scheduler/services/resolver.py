import logging
import re
import datetime as dt
from dataclasses import dataclass, field

from clinic_scheduler.core.clock import Clock, clinic_now
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import OracleUnavailable
from clinic_scheduler.services.conversation_state import ConversationState
from clinic_scheduler.services.date_parser import (
    parse_appointment_reference,
    parse_date,
    parse_slot_selection,
    parse_time,
)
from clinic_scheduler.services.keyword_rules import detect_intent, is_abandonment, is_in_scope, normalize
from clinic_scheduler.services.llm import NLUOracle

logger = logging.getLogger(__name__)

INTENTS = ("book", "cancel", "reschedule", "history", "question")
ACTIONS = ("book", "cancel", "reschedule")

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_NAME_STOPWORDS = {"dental", "dr", "dra", "doctor", "doctora", "the", "and", "with", "de", "del", "la", "el"}


@dataclass
class IntentResult:
    intent: str
    confidence: float
    source: str
    out_of_scope: bool = False
    abandon: bool = False


@dataclass
class ExtractedEntities:
    date: dt.date | None = None
    time: str | None = None
    service_id: int | None = None
    dentist_id: int | None = None
    appointment_id: int | None = None
    # Set when the patient picked from the offered slot list
    slot_selected: bool = False
    # A date the patient gave that is already behind us
    rejected_date: dt.date | None = None
    sources: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        values = {
            "date": self.date,
            "time": self.time,
            "service_id": self.service_id,
            "dentist_id": self.dentist_id,
            "appointment_id": self.appointment_id,
        }
        return {key: value for key, value in values.items() if value is not None}


# ============== Catalog matching ==============

def _words(text: str) -> set[str]:
    return set(re.findall(r"\w+", normalize(text)))


def match_catalog_name(text: str, items: list[dict]) -> int | None:
    """
    Find the catalog item named in ``text``.

    A full-name match wins. Otherwise dentists are matched on surname and
    services on the most significant words in common; a tie matches nothing.
    """
    haystack = normalize(text)
    words = _words(text)
    for item in sorted(items, key=lambda i: len(i["name"]), reverse=True):
        name = normalize(item["name"])
        if re.search(rf"\b{re.escape(name)}\b", haystack):
            return item["id"]

    best, best_score, tied = None, 0, False
    for item in items:
        tokens = [t for t in re.findall(r"\w+", normalize(item["name"])) if t not in _NAME_STOPWORDS and len(t) > 2]
        if not tokens:
            continue
        if "specialty" in item:
            score = 1 if tokens[-1] in words else 0
        else:
            score = sum(1 for t in tokens if t in words)
        if score > best_score:
            best, best_score, tied = item["id"], score, False
        elif score and score == best_score:
            tied = True
    return None if tied else best


def _oracle_catalog_id(value, items: list[dict]) -> int | None:
    if value is None:
        return None
    if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
        wanted = int(value)
        return wanted if any(item["id"] == wanted for item in items) else None
    return match_catalog_name(str(value), items)


def _oracle_date(value) -> dt.date | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return dt.date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _oracle_time(value) -> str | None:
    if not value or not isinstance(value, str):
        return None
    match = _HHMM_RE.match(value.strip()[:5])
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


# ============== Resolver ==============

class NaturalLanguageResolver:
    """
    Turns a patient message into an intent and a partial set of entities.

    The oracle is advisory. Keyword rules, the scope filter and the
    deterministic date/time grammar run first, and anything the oracle adds
    is validated before use. With no oracle configured the resolver still
    works end to end.
    """

    def __init__(
        self,
        oracle: NLUOracle | None = None,
        clock: Clock = clinic_now,
        confidence_threshold: float | None = None,
    ):
        self.oracle = oracle
        self.clock = clock
        self.confidence_threshold = (
            settings.INTENT_CONFIDENCE_THRESHOLD if confidence_threshold is None else confidence_threshold
        )

    def _mentions_schedule(self, message: str, language: str) -> bool:
        return bool(parse_date(message, self.clock().date(), language) or parse_time(message))

    async def classify(
        self,
        message: str,
        recent_turns: list[dict],
        language: str = "en",
        state: ConversationState | None = None,
    ) -> IntentResult:
        pending = state.action if state else None

        if pending and is_abandonment(message):
            return IntentResult(pending, 1.0, "rules", abandon=True)

        keyword = detect_intent(message)
        if keyword in ACTIONS:
            return IntentResult(keyword, 0.9, "rules")
        if pending and keyword is None:
            return IntentResult(pending, 0.9, "pending")

        if not is_in_scope(message) and not self._mentions_schedule(message, language):
            logger.info("Out-of-scope message refused: %.80s", message)
            return IntentResult("question", 1.0, "scope", out_of_scope=True)

        if keyword:
            return IntentResult(keyword, 0.8, "rules")

        if self.oracle is not None:
            try:
                result = await self.oracle.classify(message, recent_turns, language)
                intent = str(result.get("intent", "")).lower()
                confidence = float(result.get("confidence", 0.0))
                if intent in INTENTS and confidence >= self.confidence_threshold:
                    return IntentResult(intent, confidence, "oracle")
                logger.info("Oracle intent %r (%.2f) below threshold, using default", intent, confidence)
            except OracleUnavailable as exc:
                logger.warning("Intent oracle unavailable, falling back to rules: %s", exc)
            except (TypeError, ValueError) as exc:
                logger.warning("Intent oracle returned malformed data: %s", exc)

        # A bare date or time with nothing pending reads as the start of a booking
        if self._mentions_schedule(message, language):
            return IntentResult("book", 0.5, "rules")
        return IntentResult("question", 0.3, "default")

    async def extract(
        self,
        message: str,
        recent_turns: list[dict],
        services: list[dict],
        dentists: list[dict],
        language: str = "en",
        state: ConversationState | None = None,
    ) -> ExtractedEntities:
        """
        Pull date/time/service/dentist/appointment out of ``message``.

        Slot-selection phrases are resolved against the slots offered last
        turn and end extraction there, unless the message also names a
        date; then the date is taken and the pick dropped. Dates in the
        past are never returned as ``date``; they are reported in
        ``rejected_date`` instead.
        """
        today = self.clock().date()
        entities = ExtractedEntities()

        parsed_date = parse_date(message, today, language)
        parsed_time = parse_time(message)

        # A pick from the offered list only stands when no new day is named;
        # "slot 2 on monday" re-offers Monday instead of booking the old day
        selected = parse_slot_selection(
            message,
            state.available_slots if state else None,
            ordinals=not (parsed_date or parsed_time),
        )
        if selected and parsed_date is None:
            entities.time = selected
            entities.slot_selected = True
            entities.sources["time"] = "slot_selection"
            return entities

        oracle_data: dict = {}
        if self.oracle is not None:
            try:
                oracle_data = await self.oracle.extract(message, recent_turns, services, dentists, language, today)
            except OracleUnavailable as exc:
                logger.warning("Entity oracle unavailable, using deterministic parsing: %s", exc)

        # Date: grammar first, then the oracle; both must be today or later
        if parsed_date:
            entities.sources["date"] = "parser"
        else:
            parsed_date = _oracle_date(oracle_data.get("date"))
            if parsed_date:
                entities.sources["date"] = "oracle"
        if parsed_date and parsed_date < today:
            logger.info("Rejected past date %s (%s)", parsed_date, entities.sources.get("date"))
            entities.rejected_date = parsed_date
            entities.sources.pop("date", None)
        else:
            entities.date = parsed_date

        entities.time = parsed_time
        if entities.time:
            entities.sources["time"] = "parser"
        else:
            entities.time = _oracle_time(oracle_data.get("time"))
            if entities.time:
                entities.sources["time"] = "oracle"

        entities.service_id = match_catalog_name(message, services) or _oracle_catalog_id(
            oracle_data.get("serviceId") or oracle_data.get("serviceName"), services
        )
        entities.dentist_id = match_catalog_name(message, dentists) or _oracle_catalog_id(
            oracle_data.get("dentistId") or oracle_data.get("dentistName"), dentists
        )

        options = state.appointment_options if state else None
        entities.appointment_id = parse_appointment_reference(message, options)
        if entities.appointment_id is None:
            raw_id = oracle_data.get("appointmentId")
            if isinstance(raw_id, int) or (isinstance(raw_id, str) and raw_id.isdigit()):
                entities.appointment_id = int(raw_id)
                entities.sources["appointment_id"] = "oracle"

        return entities

    async def answer(self, message: str, recent_turns: list[dict], language: str = "en") -> str | None:
        """Free-form answer for clinic questions, ``None`` without an oracle."""
        if self.oracle is None:
            return None
        try:
            return await self.oracle.answer(message, recent_turns, language)
        except OracleUnavailable as exc:
            logger.warning("Answer oracle unavailable: %s", exc)
            return None

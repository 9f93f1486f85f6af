"""Deterministic date, time and slot-selection parsing (English and Spanish).

Everything here is pure: the caller passes ``today`` so results do not
depend on the wall clock. Dates come back as-is, including past ones; the
caller decides what to do with a date in the past.
"""

import re
from datetime import date, datetime, timedelta

import dateparser

from clinic_scheduler.services.keyword_rules import normalize

WEEKDAYS = {
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3, "friday": 4, "saturday": 5, "sunday": 6,
    "lunes": 0, "martes": 1, "miercoles": 2, "jueves": 3, "viernes": 4, "sabado": 5, "domingo": 6,
}

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6, "july": 7,
    "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8, "sep": 9, "sept": 9,
    "oct": 10, "nov": 11, "dec": 12,
    "enero": 1, "febrero": 2, "marzo": 3, "abril": 4, "mayo": 5, "junio": 6, "julio": 7,
    "agosto": 8, "septiembre": 9, "setiembre": 9, "octubre": 10, "noviembre": 11, "diciembre": 12,
}

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7, "eight": 8,
    "nine": 9, "ten": 10, "a": 1, "an": 1,
    "uno": 1, "un": 1, "una": 1, "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5, "seis": 6,
    "siete": 7, "ocho": 8, "nueve": 9, "diez": 10,
}

ORDINALS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5, "sixth": 6, "seventh": 7,
    "eighth": 8, "ninth": 9, "tenth": 10,
    "primero": 1, "primera": 1, "primer": 1, "segundo": 2, "segunda": 2, "tercero": 3,
    "tercera": 3, "tercer": 3, "cuarto": 4, "cuarta": 4, "quinto": 5, "quinta": 5,
    "sexto": 6, "sexta": 6,
}

_WEEKDAY_RE = "|".join(WEEKDAYS)
_MONTH_RE = "|".join(sorted(MONTHS, key=len, reverse=True))
_NUMBER_RE = r"\d{1,2}|" + "|".join(NUMBER_WORDS)
_ORDINAL_RE = "|".join(ORDINALS)


def _number(token: str) -> int:
    return int(token) if token.isdigit() else NUMBER_WORDS[token]


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


# ============== Dates ==============

def _relative_day(text: str, today: date) -> date | None:
    if re.search(r"\b(day after tomorrow|pasado manana)\b", text):
        return today + timedelta(days=2)
    if re.search(r"\b(today|hoy)\b", text):
        return today
    if re.search(r"\btomorrow\b", text):
        return today + timedelta(days=1)
    # "manana" alone is tomorrow; "la manana" is the morning
    if re.search(r"(?<!la )\bmanana\b", text):
        return today + timedelta(days=1)
    return None


def _offset_days(text: str, today: date) -> date | None:
    match = re.search(rf"\b(?:in|within|en|dentro de)\s+({_NUMBER_RE})\s+(?:days?|dias?)\b", text)
    if not match:
        match = re.search(rf"\b({_NUMBER_RE})\s+(?:days?|dias?)\s+(?:from now|from today|later|despues)\b", text)
    if match:
        return today + timedelta(days=_number(match.group(1)))

    match = re.search(rf"\b(?:in|en|dentro de)\s+({_NUMBER_RE})\s+(?:weeks?|semanas?)\b", text)
    if match:
        return today + timedelta(weeks=_number(match.group(1)))
    if re.search(r"\b(next week|in a week|la (proxima|siguiente) semana|la semana que viene)\b", text):
        return today + timedelta(days=7)
    return None


def _weekday(text: str, today: date) -> date | None:
    match = re.search(rf"\b(?:(this|este|esta)\s+)?(?:(?:el|la)\s+)?(?:(next|proximo|proxima|siguiente)\s+)?({_WEEKDAY_RE})\b", text)
    if not match:
        return None
    this_week, _, name = match.groups()
    days_ahead = (WEEKDAYS[name] - today.weekday()) % 7
    # A bare weekday means the next one to come; only "this" allows today
    if days_ahead == 0 and not this_week:
        days_ahead = 7
    return today + timedelta(days=days_ahead)


def _day_number(token: str) -> int:
    return ORDINALS[token] if token in ORDINALS else int(token)


def _month_day(text: str, today: date) -> date | None:
    patterns = [
        # march 5, march 5th, april first, march 5 2027
        rf"\b(?P<month>{_MONTH_RE})\.?\s+(?:the\s+)?(?P<day>\d{{1,2}}|{_ORDINAL_RE})(?:st|nd|rd|th)?\b(?:,?\s+(?P<year>\d{{4}}))?",
        # 5 march, 5th of march, first of april, 5 de marzo (de 2027)
        rf"\b(?P<day>\d{{1,2}}|{_ORDINAL_RE})(?:st|nd|rd|th)?\s+(?:of\s+|de\s+)?(?P<month>{_MONTH_RE})\b(?:,?\s+(?:de\s+)?(?P<year>\d{{4}}))?",
    ]
    for pattern in patterns:
        match = re.search(pattern, text)
        if not match:
            continue
        month = MONTHS[match.group("month")]
        day = _day_number(match.group("day"))
        if match.group("year"):
            return _safe_date(int(match.group("year")), month, day)
        candidate = _safe_date(today.year, month, day)
        if candidate and candidate < today:
            candidate = _safe_date(today.year + 1, month, day)
        return candidate
    return None


def _numeric(text: str, today: date, language: str) -> date | None:
    match = re.search(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b", text)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = re.search(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b|\b\d{1,2}\.\d{1,2}\.\d{2,4}\b", text)
    if not match:
        return None
    parsed = dateparser.parse(
        match.group(0),
        languages=[language],
        settings={
            "DATE_ORDER": "DMY" if language == "es" else "MDY",
            "PREFER_DATES_FROM": "future",
            "RELATIVE_BASE": datetime.combine(today, datetime.min.time()),
        },
    )
    return parsed.date() if parsed else None


def parse_date(message: str, today: date, language: str = "en") -> date | None:
    """
    Find a calendar date in free text.

    Understands ISO and numeric dates, today/tomorrow, "in N days",
    weekday names and month-name + day, in English and Spanish.
    """
    text = normalize(message)
    return (
        _numeric(text, today, language if language in ("en", "es") else "en")
        or _relative_day(text, today)
        or _offset_days(text, today)
        or _month_day(text, today)
        or _weekday(text, today)
    )


# ============== Times ==============

def _clock(hour: int, minute: int, meridiem: str | None) -> str | None:
    if meridiem:
        meridiem = meridiem.replace(".", "").replace(" ", "")
        if hour < 1 or hour > 12:
            return None
        if meridiem in ("pm", "tarde", "noche") and hour != 12:
            hour += 12
        elif meridiem in ("am", "manana", "madrugada") and hour == 12:
            hour = 0
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return f"{hour:02d}:{minute:02d}"


_MERIDIEM = r"(a\.?\s?m\b\.?|p\.?\s?m\b\.?|de la (?:manana|tarde|noche|madrugada))"


def parse_time(message: str) -> str | None:
    """
    Find a clock time and return it as ``HH:MM`` (24h).

    "10:30", "2:30 pm", "3pm", "noon", "a las 4 de la tarde", and "at 3"
    (read as afternoon for 1-6, the clinic's working hours).
    """
    text = normalize(message)

    if re.search(r"\b(noon|midday|mediodia)\b", text):
        return "12:00"

    match = re.search(rf"\b(\d{{1,2}})[:h](\d{{2}})\s*{_MERIDIEM}?", text)
    if match:
        return _clock(int(match.group(1)), int(match.group(2)), _meridiem(match.group(3)))

    match = re.search(rf"\b(\d{{1,2}})\s*{_MERIDIEM}", text)
    if match:
        return _clock(int(match.group(1)), 0, _meridiem(match.group(2)))

    match = re.search(r"\b(?:at|a las|a la)\s+(\d{1,2})(?:\s*o'?clock)?\b(?!\s*(?:days?|dias?|weeks?|semanas?))", text)
    if match:
        hour = int(match.group(1))
        if 1 <= hour <= 6:
            hour += 12
        return _clock(hour, 0, None)
    return None


def _meridiem(raw: str | None) -> str | None:
    if not raw:
        return None
    raw = raw.replace(".", "").replace(" ", "")
    if raw.startswith("dela"):
        return raw[len("dela"):]
    return raw


# ============== Slot selection ==============

_SLOT_PATTERNS = [
    rf"\b(?:slot|option|number|opcion|numero|horario)\s*(?:#|no\.?\s*)?(\d{{1,2}})\b",
    r"#\s*(\d{1,2})\b",
    r"\b(\d{1,2})(?:st|nd|rd|th|o|a)?\s+(?:slot|option|one|opcion)\b",
]


def parse_slot_selection(message: str, slots: list[str] | None, ordinals: bool = True) -> str | None:
    """
    Resolve "slot 2", "the first one", "option #3", "last" or a bare "2"
    against the slots offered last turn. Returns the chosen ``HH:MM``.

    With ``ordinals`` off only explicit picks ("slot 2", "#3", a bare
    number) count; callers turn it off when the message names a date or
    time, so "first thing monday" is not read as slot 1.
    """
    if not slots:
        return None
    text = normalize(message).strip()

    index = None
    for pattern in _SLOT_PATTERNS:
        match = re.search(pattern, text)
        if match:
            index = int(match.group(1))
            break

    if index is None:
        match = re.fullmatch(r"(\d{1,2})\s*[.!]?", text)
        if match:
            index = int(match.group(1))

    if index is None and ordinals:
        match = re.search(rf"\b({_ORDINAL_RE})\b", text)
        if match and (len(text.split()) <= 4 or re.search(r"\b(slot|option|one|opcion|horario|hora)\b", text)):
            index = ORDINALS[match.group(1)]

    if index is None and ordinals and re.search(r"\b(last|ultimo|ultima)\b", text):
        index = len(slots)

    if index is None or not 1 <= index <= len(slots):
        return None
    return slots[index - 1]


def parse_appointment_reference(message: str, options: list[int] | None = None) -> int | None:
    """
    Find which appointment the patient means.

    Explicit ids ("appointment 42", "#42", "cita 42") win; otherwise an
    ordinal or bare position is resolved against ``options``.
    """
    text = normalize(message)
    match = re.search(r"\b(?:appointment|appt|booking|cita|reserva|id)\s*(?:id|number|no\.?|numero)?\s*#?\s*(\d+)\b", text)
    if not match:
        match = re.search(r"#\s*(\d+)\b", text)
    if match:
        return int(match.group(1))

    if not options:
        return None
    position = None
    match = re.fullmatch(r"\s*(\d{1,2})\s*[.!]?\s*", text)
    if match:
        candidate = int(match.group(1))
        # A bare number may be the id itself
        if candidate in options:
            return candidate
        position = candidate
    else:
        match = re.search(rf"\b({_ORDINAL_RE})\b", text)
        if match:
            position = ORDINALS[match.group(1)]
        elif re.search(r"\b(last|ultimo|ultima)\b", text):
            position = len(options)
    if position and 1 <= position <= len(options):
        return options[position - 1]
    return None

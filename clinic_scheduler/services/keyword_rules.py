"""Keyword rules that run without the language model.

Scope filtering keeps the assistant on appointments, the clinic and dental
care; intent rules give the resolver a deterministic answer when the oracle
is missing, slow or unsure.
"""

import re
import unicodedata

SCOPE_KEYWORDS = [
    # Appointments
    "appointment", "appointments", "book", "booking", "schedule", "reschedule", "cancel",
    "slot", "slots", "time", "date", "when is my", "my appointment", "upcoming", "past appointment",
    # Doctors
    "doctor", "dentist", "dr", "physician", "specialist", "surgeon", "orthodontist",
    "endodontist", "periodontist", "prosthodontist",
    # Clinic
    "clinic", "office", "practice", "location", "address", "contact", "hours", "open", "closed",
    # Services
    "service", "services", "treatment", "procedure", "cleaning", "checkup", "check-up", "examination",
    "filling", "crown", "implant", "root canal", "extraction", "whitening", "braces",
    "orthodontics", "dental", "oral", "tooth", "teeth", "gum", "gums",
    # Medical
    "pain", "ache", "toothache", "cavity", "decay", "infection", "hygiene", "brushing", "flossing",
    "x-ray", "xray", "radiograph", "prescription", "medication", "insurance",
    "payment", "cost", "price", "fee", "bill", "invoice",
    # Aftercare and records
    "care", "recovery", "follow-up", "followup", "instructions",
    "record", "medical record", "dental record", "chart",
    # Courtesy
    "hello", "hi", "hey", "help", "thanks", "thank you", "bye", "goodbye",
    # Spanish
    "cita", "citas", "reservar", "reserva", "agendar", "programar", "cancelar", "reprogramar",
    "cambiar", "horario", "hora", "fecha", "dentista", "doctor", "doctora", "clinica", "consulta",
    "limpieza", "empaste", "corona", "implante", "endodoncia", "extraccion", "blanqueamiento",
    "brackets", "ortodoncia", "diente", "dientes", "muela", "encia", "encias", "dolor", "caries",
    "seguro", "precio", "costo", "pago", "hola", "ayuda", "gracias", "adios",
]

OUT_OF_SCOPE_KEYWORDS = [
    "movie", "film", "actor", "actress", "celebrity", "sport", "sports", "football", "basketball",
    "cricket", "game", "gaming", "music", "song", "artist", "recipe", "cooking", "food",
    "weather", "temperature", "rain", "snow", "news", "politics", "election",
    "president", "prime minister", "country", "capital", "history of", "science", "math",
    "physics", "chemistry", "biology", "geography", "entertainment", "joke", "funny",
    "comedy", "tv show", "television", "series", "novel", "story", "travel",
    "vacation", "trip", "hotel", "restaurant", "shopping", "fashion",
    "clothing", "car", "vehicle", "technology", "computer", "internet", "code", "programming",
    "social media", "facebook", "instagram", "twitter", "tiktok", "youtube",
    # Spanish
    "pelicula", "futbol", "musica", "cancion", "receta", "cocina", "clima", "noticias",
    "politica", "elecciones", "chiste", "viaje", "vacaciones", "coche",
]

REFUSAL = {
    "en": (
        "I don't have knowledge about it. I can only help you with appointments, doctors, "
        "and clinic-related questions. How can I assist you with your dental care needs?"
    ),
    "es": (
        "No tengo información sobre eso. Solo puedo ayudarte con citas, doctores y preguntas "
        "sobre la clínica. ¿Cómo puedo ayudarte con tu cuidado dental?"
    ),
}

INTENT_PATTERNS = {
    "cancel": [
        r"\bcancel\w*\b.*\b(appointment|booking|visit|it)\b",
        r"\b(appointment|booking)\b.*\bcancel\w*\b",
        r"\bcancel+ar\b.*\b(cita|reserva|consulta)\b",
        r"\banular\b",
        # Bare requests: "cancel", "I want to cancel", "quiero cancelar"
        r"^\s*(please\s+)?(i\s+(want|need|would like)\s+to\s+|i'?d\s+like\s+to\s+)?cancel\w*(,?\s+please)?\s*[.!]*\s*$",
        r"^\s*(por favor\s+)?((quiero|necesito|deseo)\s+)?cancelar(,?\s+por favor)?\s*[.!]*\s*$",
    ],
    "reschedule": [
        r"\bre-?schedul\w*\b",
        r"\b(change|move|postpone|push back)\b.*\b(appointment|booking)\b",
        r"\b(appointment|booking)\b.*\b(change|move|another (day|time))\b",
        r"\breprogramar\b",
        r"\b(cambiar|mover|aplazar)\b.*\b(cita|reserva)\b",
    ],
    "history": [
        r"\bhistory\b",
        r"\bpast appointments?\b",
        r"\b(my|show( me)?|list) (upcoming |past )?(appointments|bookings|visits)\b",
        r"\bupcoming\b",
        r"\bwhen is my\b",
        r"\bhistorial\b",
        r"\bmis citas\b",
        r"\bcu[aá]ndo es mi cita\b",
    ],
    "book": [
        r"\bbook\w*\b",
        r"\bschedule\b",
        r"\b(make|set up|get) an? appointment\b",
        r"\bappointment\b.*\b(want|need|like|for)\b",
        r"\b(want|need|like)\b.*\bappointment\b",
        r"\b(reservar|agendar|programar|pedir)\b",
        r"\b(quiero|necesito)\b.*\bcita\b",
        r"\bnueva cita\b",
    ],
}

# Checked in this order; "cancel my booking" must not read as "book"
INTENT_ORDER = ["cancel", "reschedule", "history", "book"]

ABANDON_PATTERNS = [
    r"^\s*(never ?mind|nevermind|forget (it|about it)|stop|quit|exit|start over|abort|cancel( (that|this|it))?)\s*[.!]*\s*$",
    r"\b(never ?mind|forget it|i changed my mind|don'?t want to (book|continue))\b",
    r"^\s*(olv[ií]dalo|d[eé]jalo|no importa|para|cancela|cancelar|cancela esto|cancelar esto|empezar de nuevo)\s*[.!]*\s*$",
    r"\b(olv[ií]dalo|ya no quiero)\b",
]

SHORT_GREETING_RE = re.compile(r"\b(hello|hi|hey|help|hola|ayuda)\b")
PERSONAL_RE = re.compile(r"\b(my|i|me|mi|mis|yo|me)\b")


def normalize(text: str) -> str:
    """Lowercase and strip accents so keyword lists stay ASCII."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _contains(text: str, keywords: list[str]) -> bool:
    return any(re.search(rf"(?<![\w]){re.escape(k)}(?![\w])", text) for k in keywords)


def is_in_scope(message: str) -> bool:
    """
    Decide whether a message belongs to the appointment/clinic/dental domain.

    Scope keywords win over out-of-scope ones; short greetings and questions
    about the patient's own data are allowed; anything else is refused.
    """
    text = normalize(message)
    has_scope = _contains(text, [normalize(k) for k in SCOPE_KEYWORDS])
    has_out_of_scope = _contains(text, [normalize(k) for k in OUT_OF_SCOPE_KEYWORDS])

    if has_scope:
        return True
    if has_out_of_scope:
        return False
    if len(text.strip()) < 20 and SHORT_GREETING_RE.search(text):
        return True
    return bool(PERSONAL_RE.search(text))


def refusal(language: str = "en") -> str:
    return REFUSAL.get(language, REFUSAL["en"])


def detect_intent(message: str) -> str | None:
    """Keyword intent, or ``None`` when no rule fires."""
    text = normalize(message)
    for intent in INTENT_ORDER:
        if any(re.search(pattern, text) for pattern in INTENT_PATTERNS[intent]):
            return intent
    return None


def is_abandonment(message: str) -> bool:
    text = normalize(message)
    return any(re.search(pattern, text) for pattern in ABANDON_PATTERNS)

"""Patient-facing reply text in English and Spanish."""

from datetime import date

from clinic_scheduler.core.config import settings

DAY_NAMES = {
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
    "es": ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"],
}

MONTH_NAMES = {
    "en": ["January", "February", "March", "April", "May", "June", "July", "August",
           "September", "October", "November", "December"],
    "es": ["enero", "febrero", "marzo", "abril", "mayo", "junio", "julio", "agosto",
           "septiembre", "octubre", "noviembre", "diciembre"],
}

TEMPLATES = {
    "en": {
        "greeting": "Hello! I'm the {clinic} assistant. I can book, cancel or reschedule appointments "
                    "and show your appointment history. How can I help?",
        "ask_date": "What day would you like to come in?",
        "ask_date_with_suggestions": "What day would you like to come in? These are the next free times:\n{suggestions}",
        "offer_slots": "These times are free on {date}:\n{slots}\n"
                       "Reply with a time or a slot number (for example \"slot 2\").",
        "no_slots_on_date": "Sorry, there are no free times on {date}. Please choose another day.",
        "past_date": "{date} is in the past. Please choose today or a later date.",
        "booked": "Your appointment is booked for {date} at {time}{details}. Appointment number: #{id}.",
        "slot_unavailable": "The time {time} is not available on {date}. These times are still free:\n{slots}",
        "slot_unavailable_none": "The time {time} is not available on {date} and that day is now full. "
                                 "Please choose another day.",
        "duplicate": "You already have an appointment for {service} on {date} at {time}. "
                     "Please choose a different date or service.",
        "ask_which_cancel": "Which appointment would you like to cancel?\n{appointments}",
        "ask_which_reschedule": "Which appointment would you like to reschedule?\n{appointments}",
        "no_upcoming": "You don't have any upcoming appointments.",
        "cancelled": "Your appointment on {date} at {time} has been cancelled.",
        "ask_new_date": "What new date would you like for your appointment on {date} at {time}?",
        "ask_new_date_with_suggestions": "What new date would you like for your appointment on {date} at {time}? "
                                         "These are the next free times:\n{suggestions}",
        "rescheduled": "Your appointment has been moved to {date} at {time}.",
        "history_empty": "You don't have any appointments yet.",
        "history": "Here are your appointments:\n{appointments}",
        "abandoned": "No problem, I've dropped that request. Is there anything else I can help you with?",
        "fallback_answer": "I can help you book, cancel or reschedule appointments and look up your "
                           "appointment history. What would you like to do?",
        "invalid": "{message}",
        "with_service": " for {service}",
        "with_dentist": " with {dentist}",
        "status_cancelled": "cancelled",
        "status_completed": "completed",
        "at": "at",
    },
    "es": {
        "greeting": "¡Hola! Soy el asistente de {clinic}. Puedo reservar, cancelar o cambiar citas "
                    "y mostrar tu historial de citas. ¿En qué te ayudo?",
        "ask_date": "¿Qué día te gustaría venir?",
        "ask_date_with_suggestions": "¿Qué día te gustaría venir? Estos son los próximos horarios libres:\n{suggestions}",
        "offer_slots": "Estos horarios están libres el {date}:\n{slots}\n"
                       "Responde con una hora o con el número de la opción (por ejemplo \"opción 2\").",
        "no_slots_on_date": "Lo siento, no hay horarios libres el {date}. Por favor elige otro día.",
        "past_date": "El {date} ya pasó. Por favor elige hoy o una fecha posterior.",
        "booked": "Tu cita quedó reservada para el {date} a las {time}{details}. Número de cita: #{id}.",
        "slot_unavailable": "La hora {time} no está disponible el {date}. Estos horarios siguen libres:\n{slots}",
        "slot_unavailable_none": "La hora {time} no está disponible el {date} y ese día ya está completo. "
                                 "Por favor elige otro día.",
        "duplicate": "Ya tienes una cita de {service} el {date} a las {time}. "
                     "Por favor elige otra fecha u otro servicio.",
        "ask_which_cancel": "¿Qué cita quieres cancelar?\n{appointments}",
        "ask_which_reschedule": "¿Qué cita quieres cambiar?\n{appointments}",
        "no_upcoming": "No tienes citas próximas.",
        "cancelled": "Tu cita del {date} a las {time} ha sido cancelada.",
        "ask_new_date": "¿Para qué nueva fecha quieres mover tu cita del {date} a las {time}?",
        "ask_new_date_with_suggestions": "¿Para qué nueva fecha quieres mover tu cita del {date} a las {time}? "
                                         "Estos son los próximos horarios libres:\n{suggestions}",
        "rescheduled": "Tu cita se ha movido al {date} a las {time}.",
        "history_empty": "Todavía no tienes citas.",
        "history": "Estas son tus citas:\n{appointments}",
        "abandoned": "Sin problema, he descartado esa solicitud. ¿Te ayudo con algo más?",
        "fallback_answer": "Puedo ayudarte a reservar, cancelar o cambiar citas y consultar tu historial. "
                           "¿Qué te gustaría hacer?",
        "invalid": "No pude procesar esa solicitud: {message}",
        "with_service": " de {service}",
        "with_dentist": " con {dentist}",
        "status_cancelled": "cancelada",
        "status_completed": "completada",
        "at": "a las",
    },
}


def _lang(language: str | None) -> str:
    return language if language in TEMPLATES else settings.DEFAULT_LANGUAGE


def render(language: str | None, key: str, **values) -> str:
    return TEMPLATES[_lang(language)][key].format(clinic=settings.CLINIC_NAME, **values)


def format_date(value: date, language: str | None = "en") -> str:
    lang = _lang(language)
    day = DAY_NAMES[lang][value.weekday()]
    month = MONTH_NAMES[lang][value.month - 1]
    if lang == "es":
        return f"{day} {value.day} de {month}"
    return f"{day}, {month} {value.day}"


def numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def format_suggestions(suggestions: dict[date, list[str]], language: str | None = "en") -> str:
    return "\n".join(f"- {format_date(day, language)}: {', '.join(slots)}" for day, slots in suggestions.items())


def format_appointment(appointment, language: str | None = "en", services: dict[int, str] | None = None) -> str:
    """One-line summary like ``#12 Friday, October 23 at 10:00 (Cleaning)``."""
    lang = _lang(language)
    line = f"#{appointment.id} {format_date(appointment.date, lang)} {TEMPLATES[lang]['at']} {appointment.time.strftime('%H:%M')}"
    service_name = (services or {}).get(appointment.service_id)
    if service_name:
        line += f" ({service_name})"
    if appointment.status in ("cancelled", "completed"):
        line += f" [{TEMPLATES[lang]['status_' + appointment.status]}]"
    return line

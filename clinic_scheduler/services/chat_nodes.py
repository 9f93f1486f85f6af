import logging
from langchain_core.runnables import RunnableConfig

from clinic_scheduler.core.errors import (
    AlreadyTerminal,
    BookingError,
    DuplicateConflict,
    NotFoundOrForbidden,
    SlotUnavailable,
)
from clinic_scheduler.services.chat_state import DialogueContext, DialogueState
from clinic_scheduler.services.conversation_state import ConversationState
from clinic_scheduler.services.keyword_rules import refusal
from clinic_scheduler.services.replies import (
    format_appointment,
    format_date,
    format_suggestions,
    numbered,
    render,
)
from clinic_scheduler.services.resolver import ACTIONS

logger = logging.getLogger(__name__)


def _context(config: RunnableConfig) -> DialogueContext:
    return config["configurable"]["context"]


def _draft_state(state: DialogueState, action: str) -> ConversationState:
    """The stored state for ``action`` (or a fresh one) with this turn's entities merged in."""
    stored = state.get("conversation_state")
    conv = stored if stored and stored.action == action else ConversationState.start(action)
    entities = state.get("entities")
    return conv.merge(entities.as_dict()) if entities else conv


def _service(state: DialogueState, service_id: int | None) -> dict | None:
    for service in state.get("available_services", []):
        if service["id"] == service_id:
            return service
    return None


def _service_names(state: DialogueState) -> dict[int, str]:
    return {s["id"]: s["name"] for s in state.get("available_services", [])}


def _dentist_name(state: DialogueState, dentist_id: int | None) -> str | None:
    for dentist in state.get("available_dentists", []):
        if dentist["id"] == dentist_id:
            return dentist["name"]
    return None


async def _ask_for_date(
    state: DialogueState,
    ctx: DialogueContext,
    dentist_id: int | None,
    duration: int | None,
    template: str = "ask_date",
    **values,
) -> str:
    language = state.get("language")
    suggestions = await ctx.slots.suggest_slots(dentist_id=dentist_id, duration_minutes=duration)
    if not suggestions:
        return render(language, template, **values)
    return render(
        language, f"{template}_with_suggestions", suggestions=format_suggestions(suggestions, language), **values
    )


def _handle_refusal(state: DialogueState, conv: ConversationState, exc: BookingError, time: str) -> ConversationState:
    """Turn a booking refusal into a reply and decide what the patient is asked next."""
    language = state.get("language")
    draft = conv.pending_action

    if isinstance(exc, SlotUnavailable):
        values = {"time": time, "date": format_date(draft.date, language)}
        if exc.slots:
            state["response"] = render(language, "slot_unavailable", slots=numbered(exc.slots), **values)
            return conv.forget("time").with_slots(exc.slots)
        state["response"] = render(language, "slot_unavailable_none", **values)
        return conv.forget("date", "time").with_slots(None)

    if isinstance(exc, DuplicateConflict) and exc.existing is not None:
        existing = exc.existing
        state["response"] = render(
            language,
            "duplicate",
            service=_service_names(state).get(existing.service_id, "this service"),
            date=format_date(existing.date, language),
            time=existing.time_label,
        )
        return conv.forget("date", "time").with_slots(None)

    if isinstance(exc, (NotFoundOrForbidden, AlreadyTerminal)):
        state["response"] = render(language, "invalid", message=exc.message)
        state["clear_state"] = True
        return conv

    state["response"] = render(language, "invalid", message=exc.message)
    return conv.forget("date", "time").with_slots(None)


async def _list_upcoming(state: DialogueState, ctx: DialogueContext, conv: ConversationState, template: str) -> ConversationState:
    language = state.get("language")
    upcoming = await ctx.booking.upcoming_appointments(state["patient_id"])
    if not upcoming:
        state["response"] = render(language, "no_upcoming")
        state["clear_state"] = True
        return conv
    lines = [format_appointment(a, language, _service_names(state)) for a in upcoming]
    state["response"] = render(language, template, appointments=numbered(lines))
    return conv.with_options([a.id for a in upcoming])


# ============== NODE 1: Resolve the message ==============

async def resolve_node(state: DialogueState, config: RunnableConfig) -> DialogueState:
    """
    Classify the message and extract entities.
    This node runs first for every patient message.
    """
    ctx = _context(config)
    stored = state.get("conversation_state")
    message = state.get("current_message", "")
    language = state.get("language", "en")
    history = state.get("messages", [])

    intent = await ctx.resolver.classify(message, history, language, stored)
    state["intent"] = intent
    state["entities"] = None
    if intent.out_of_scope or intent.abandon or intent.intent not in ACTIONS:
        return state

    # Offered slots and listed appointments only mean something to the action that offered them
    same_action = stored if stored and stored.action == intent.intent else None
    state["entities"] = await ctx.resolver.extract(
        message,
        history,
        state.get("available_services", []),
        state.get("available_dentists", []),
        language,
        same_action,
    )
    logger.debug("Resolved %s (%s, %.2f): %s", intent.intent, intent.source, intent.confidence, state["entities"])
    return state


# ============== NODE 2: Router ==============

def route_after_resolve(state: DialogueState) -> str:
    """
    Conditional edge function - decides which node to go to next.
    Returns the name of the next node.
    """
    intent = state["intent"]

    if intent.abandon:
        return "abandon_node"

    if intent.out_of_scope:
        return "refuse_node"

    if intent.intent == "book":
        return "book_node"

    if intent.intent == "cancel":
        return "cancel_node"

    if intent.intent == "reschedule":
        return "reschedule_node"

    if intent.intent == "history":
        return "history_node"

    return "answer_node"


# ============== NODE 3: Book ==============

async def book_node(state: DialogueState, config: RunnableConfig) -> DialogueState:
    """Collect date and time for a new appointment, then book it."""
    ctx = _context(config)
    language = state.get("language")
    entities = state.get("entities")
    conv = _draft_state(state, "book")
    draft = conv.pending_action
    service = _service(state, draft.service_id)
    duration = service["duration_minutes"] if service else None

    if entities and entities.rejected_date:
        state["response"] = render(language, "past_date", date=format_date(entities.rejected_date, language))
        state["conversation_state"] = conv.forget("date").with_slots(None)
        return state

    if draft.date is None:
        state["response"] = await _ask_for_date(state, ctx, draft.dentist_id, duration)
        state["conversation_state"] = conv.with_slots(None)
        return state

    if draft.time is None:
        availability = await ctx.slots.compute_slots(draft.date, draft.dentist_id, duration)
        if not availability.available:
            state["response"] = render(language, "no_slots_on_date", date=format_date(draft.date, language))
            state["conversation_state"] = conv.forget("date").with_slots(None)
        else:
            state["response"] = render(
                language, "offer_slots", date=format_date(draft.date, language), slots=numbered(availability.slots)
            )
            state["conversation_state"] = conv.with_slots(availability.slots)
        return state

    try:
        appointment_id = await ctx.booking.book(
            state["patient_id"],
            draft.date,
            draft.time,
            service_id=draft.service_id,
            dentist_id=draft.dentist_id,
        )
    except BookingError as exc:
        logger.info("Booking refused for patient %s: %s", state["patient_id"], exc.message)
        state["conversation_state"] = _handle_refusal(state, conv, exc, draft.time)
        return state

    details = ""
    if service:
        details += render(language, "with_service", service=service["name"])
    dentist = _dentist_name(state, draft.dentist_id)
    if dentist:
        details += render(language, "with_dentist", dentist=dentist)
    state["response"] = render(
        language,
        "booked",
        date=format_date(draft.date, language),
        time=draft.time,
        details=details,
        id=appointment_id,
    )
    state["appointment_id"] = appointment_id
    state["clear_state"] = True
    return state


# ============== NODE 4: Cancel ==============

async def cancel_node(state: DialogueState, config: RunnableConfig) -> DialogueState:
    """Cancel the appointment the patient pointed at, or ask which one."""
    ctx = _context(config)
    language = state.get("language")
    conv = _draft_state(state, "cancel")
    draft = conv.pending_action

    if draft.appointment_id is None:
        state["conversation_state"] = await _list_upcoming(state, ctx, conv, "ask_which_cancel")
        return state

    try:
        appointment = await ctx.booking.cancel(state["patient_id"], draft.appointment_id, reason=draft.reason)
    except BookingError as exc:
        logger.info("Cancel refused for patient %s: %s", state["patient_id"], exc.message)
        state["response"] = render(language, "invalid", message=exc.message)
        state["clear_state"] = True
        return state

    state["response"] = render(
        language, "cancelled", date=format_date(appointment.date, language), time=appointment.time_label
    )
    state["appointment_id"] = appointment.id
    state["clear_state"] = True
    return state


# ============== NODE 5: Reschedule ==============

async def reschedule_node(state: DialogueState, config: RunnableConfig) -> DialogueState:
    """Find the appointment, collect the new date and time, then move it."""
    ctx = _context(config)
    language = state.get("language")
    entities = state.get("entities")
    conv = _draft_state(state, "reschedule")
    draft = conv.pending_action

    if draft.appointment_id is None:
        state["conversation_state"] = await _list_upcoming(state, ctx, conv, "ask_which_reschedule")
        return state

    try:
        current = await ctx.booking.get_appointment(state["patient_id"], draft.appointment_id)
    except NotFoundOrForbidden as exc:
        state["response"] = render(language, "invalid", message=exc.message)
        state["clear_state"] = True
        return state
    if current.status != "scheduled":
        state["response"] = render(
            language, "invalid", message=f"This appointment is {current.status} and cannot be rescheduled."
        )
        state["clear_state"] = True
        return state

    if entities and entities.rejected_date:
        state["response"] = render(language, "past_date", date=format_date(entities.rejected_date, language))
        state["conversation_state"] = conv.forget("date").with_slots(None)
        return state

    if draft.date is None:
        state["response"] = await _ask_for_date(
            state,
            ctx,
            current.dentist_id,
            current.duration_minutes,
            template="ask_new_date",
            date=format_date(current.date, language),
            time=current.time_label,
        )
        state["conversation_state"] = conv.with_slots(None)
        return state

    if draft.time is None:
        availability = await ctx.slots.compute_slots(
            draft.date, current.dentist_id, current.duration_minutes, exclude_appointment_id=current.id
        )
        if not availability.available:
            state["response"] = render(language, "no_slots_on_date", date=format_date(draft.date, language))
            state["conversation_state"] = conv.forget("date").with_slots(None)
        else:
            state["response"] = render(
                language, "offer_slots", date=format_date(draft.date, language), slots=numbered(availability.slots)
            )
            state["conversation_state"] = conv.with_slots(availability.slots)
        return state

    try:
        moved = await ctx.booking.reschedule(state["patient_id"], draft.appointment_id, draft.date, draft.time)
    except BookingError as exc:
        logger.info("Reschedule refused for patient %s: %s", state["patient_id"], exc.message)
        state["conversation_state"] = _handle_refusal(state, conv, exc, draft.time)
        return state

    state["response"] = render(language, "rescheduled", date=format_date(moved.date, language), time=moved.time_label)
    state["appointment_id"] = moved.id
    state["clear_state"] = True
    return state


# ============== NODE 6: History ==============

async def history_node(state: DialogueState, config: RunnableConfig) -> DialogueState:
    """List the patient's appointments. Leaves any pending action untouched."""
    ctx = _context(config)
    language = state.get("language")
    appointments = await ctx.booking.list_appointments(state["patient_id"])

    if not appointments:
        state["response"] = render(language, "history_empty")
    else:
        lines = [format_appointment(a, language, _service_names(state)) for a in appointments]
        state["response"] = render(language, "history", appointments="\n".join(f"- {line}" for line in lines))
    return state


# ============== NODE 7: Clinic questions ==============

async def answer_node(state: DialogueState, config: RunnableConfig) -> DialogueState:
    ctx = _context(config)
    language = state.get("language")
    answer = await ctx.resolver.answer(state.get("current_message", ""), state.get("messages", []), language)
    state["response"] = answer or render(language, "fallback_answer")
    return state


# ============== NODE 8: Out of scope ==============

async def refuse_node(state: DialogueState) -> DialogueState:
    state["response"] = refusal(state.get("language"))
    return state


# ============== NODE 9: Abandon ==============

async def abandon_node(state: DialogueState) -> DialogueState:
    """Patient dropped the pending request."""
    state["response"] = render(state.get("language"), "abandoned")
    state["clear_state"] = True
    return state

from dataclasses import dataclass
from typing import TypedDict

from clinic_scheduler.core.clock import Clock
from clinic_scheduler.services.booking_service import BookingService
from clinic_scheduler.services.conversation_state import ConversationState
from clinic_scheduler.services.resolver import ExtractedEntities, IntentResult, NaturalLanguageResolver
from clinic_scheduler.services.slot_service import SlotService


class DialogueState(TypedDict, total=False):
    """
    State for a single patient turn.
    LangGraph passes this state between nodes, and each node can read/update it.
    """

    # === Conversation identifiers ===
    conversation_id: int
    patient_id: int
    language: str

    # === Conversation context ===
    messages: list[dict]
    current_message: str
    available_services: list[dict]
    available_dentists: list[dict]

    # === Stored between turns ===
    conversation_state: ConversationState | None

    # === Resolver output ===
    intent: IntentResult
    entities: ExtractedEntities | None

    # === Result ===
    response: str
    appointment_id: int | None
    clear_state: bool


@dataclass
class DialogueContext:
    """Services the nodes call into, passed via ``config["configurable"]["context"]``."""

    resolver: NaturalLanguageResolver
    slots: SlotService
    booking: BookingService
    clock: Clock

import logging
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core.clock import Clock, clinic_now
from clinic_scheduler.core.config import settings
from clinic_scheduler.models import Conversation, Patient
from clinic_scheduler.schemas import ChatReply
from clinic_scheduler.services.booking_service import BookingService
from clinic_scheduler.services.catalog_service import CatalogService
from clinic_scheduler.services.chat_graph import dialogue_graph
from clinic_scheduler.services.chat_state import DialogueContext, DialogueState
from clinic_scheduler.services.conversation_state import ConversationStore, MessageLog
from clinic_scheduler.services.llm import NLUOracle, default_oracle
from clinic_scheduler.services.replies import render
from clinic_scheduler.services.resolver import NaturalLanguageResolver
from clinic_scheduler.services.slot_service import SlotService

logger = logging.getLogger(__name__)

_UNSET = object()


class ChatService:
    """
    Dialogue driver: connects the LangGraph workflow to the database.

    Each turn loads the stored state, runs the graph once, and persists the
    new state and both messages.
    """

    def __init__(self, db: AsyncSession, oracle: NLUOracle | None | object = _UNSET, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock
        self.store = ConversationStore(db)
        self.log = MessageLog(db)
        self.catalog = CatalogService(db)
        self.slots = SlotService(db, clock=clock)
        self.booking = BookingService(db, slots=self.slots, clock=clock)
        self.resolver = NaturalLanguageResolver(
            oracle=default_oracle() if oracle is _UNSET else oracle,
            clock=clock,
        )

    async def start_conversation(self, patient_id: int, language: str | None = None) -> tuple[int, str]:
        """Open a conversation for a patient. Returns its id and the greeting."""
        patient = await self.db.get(Patient, patient_id)
        if not patient:
            raise ValueError(f"Patient not found: {patient_id}")

        language = language or patient.language or settings.DEFAULT_LANGUAGE
        conversation = Conversation(
            patient_id=patient_id,
            language=language,
            created_at=datetime.utcnow(),
        )
        self.db.add(conversation)
        await self.db.commit()

        greeting = render(language, "greeting")
        await self.log.append(conversation.id, "assistant", greeting)
        logger.info("Started conversation %s for patient %s (%s)", conversation.id, patient_id, language)
        return conversation.id, greeting

    async def send_message(self, conversation_id: int, user_message: str) -> ChatReply:
        """Process a patient message and return the assistant's reply."""
        conversation = await self.db.get(Conversation, conversation_id)
        if not conversation:
            raise ValueError(f"Conversation not found: {conversation_id}")
        patient_id = conversation.patient_id
        language = conversation.language or settings.DEFAULT_LANGUAGE

        history = await self.log.recent(conversation_id, settings.HISTORY_TURNS)
        stored = await self.store.load(conversation_id)
        await self.log.append(conversation_id, "user", user_message)

        state: DialogueState = {
            "conversation_id": conversation_id,
            "patient_id": patient_id,
            "language": language,
            "messages": history,
            "current_message": user_message,
            "available_services": await self.catalog.list_services(),
            "available_dentists": await self.catalog.list_dentists(),
            "conversation_state": stored,
            "clear_state": False,
            "appointment_id": None,
        }
        context = DialogueContext(resolver=self.resolver, slots=self.slots, booking=self.booking, clock=self.clock)

        try:
            result = await dialogue_graph.ainvoke(state, config={"configurable": {"context": context}})
        except SQLAlchemyError:
            # Stored state stays as it was before this turn
            await self.db.rollback()
            logger.exception("Database error in conversation %s", conversation_id)
            raise

        new_state = None if result.get("clear_state") else result.get("conversation_state")
        await self.store.save(conversation_id, new_state)

        intent = result["intent"]
        reply = result.get("response") or render(language, "fallback_answer")
        await self.log.append(
            conversation_id,
            "assistant",
            reply,
            metadata={
                "intent": intent.intent,
                "confidence": intent.confidence,
                "source": intent.source,
                "appointment_id": result.get("appointment_id"),
            },
        )

        return ChatReply(
            conversation_id=conversation_id,
            reply=reply,
            intent=intent.intent,
            out_of_scope=intent.out_of_scope,
            appointment_id=result.get("appointment_id"),
            missing_info=new_state.missing_info if new_state else [],
            available_slots=(new_state.available_slots or []) if new_state else [],
        )

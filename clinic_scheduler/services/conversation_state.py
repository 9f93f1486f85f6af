import datetime as dt
import logging
from typing import Annotated, ClassVar, Literal, Union
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from clinic_scheduler.models import Conversation, ConversationMessage

logger = logging.getLogger(__name__)


# ============== Pending actions ==============

class _Draft(BaseModel):
    required: ClassVar[tuple[str, ...]] = ()

    def merged(self, entities: dict) -> "_Draft":
        """Overwrite the fields this turn extracted, keep the rest."""
        updates = {
            key: value
            for key, value in entities.items()
            if value is not None and key in type(self).model_fields and key != "action"
        }
        return self.model_copy(update=updates)

    def missing(self) -> list[str]:
        return [name for name in self.required if getattr(self, name) is None]


class BookDraft(_Draft):
    action: Literal["book"] = "book"
    service_id: int | None = None
    dentist_id: int | None = None
    date: dt.date | None = None
    time: str | None = None

    required: ClassVar[tuple[str, ...]] = ("date", "time")


class CancelDraft(_Draft):
    action: Literal["cancel"] = "cancel"
    appointment_id: int | None = None
    reason: str | None = None

    required: ClassVar[tuple[str, ...]] = ("appointment_id",)


class RescheduleDraft(_Draft):
    action: Literal["reschedule"] = "reschedule"
    appointment_id: int | None = None
    date: dt.date | None = None
    time: str | None = None

    required: ClassVar[tuple[str, ...]] = ("appointment_id", "date", "time")


PendingAction = Annotated[Union[BookDraft, CancelDraft, RescheduleDraft], Field(discriminator="action")]

DRAFTS = {"book": BookDraft, "cancel": CancelDraft, "reschedule": RescheduleDraft}


class ConversationState(BaseModel):
    """Everything the dialogue remembers between turns."""

    pending_action: PendingAction | None = None
    missing_info: list[str] = []
    available_slots: list[str] | None = None
    # Appointment ids listed to the patient, in the order shown
    appointment_options: list[int] | None = None

    @classmethod
    def start(cls, action: str) -> "ConversationState":
        draft = DRAFTS[action]()
        return cls(pending_action=draft, missing_info=draft.missing())

    @property
    def action(self) -> str | None:
        return self.pending_action.action if self.pending_action else None

    @property
    def collected_info(self) -> dict:
        if not self.pending_action:
            return {}
        return self.pending_action.model_dump(exclude={"action"}, exclude_none=True)

    def merge(self, entities: dict) -> "ConversationState":
        """
        Fold one turn's entities into the pending action.

        Freshly extracted values win, fields not mentioned this turn survive,
        and ``missing_info`` is recomputed from the action's required fields.
        """
        if not self.pending_action:
            return self
        draft = self.pending_action.merged(entities)
        return self.model_copy(update={"pending_action": draft, "missing_info": draft.missing()})

    def with_slots(self, slots: list[str] | None) -> "ConversationState":
        return self.model_copy(update={"available_slots": slots or None})

    def with_options(self, appointment_ids: list[int] | None) -> "ConversationState":
        return self.model_copy(update={"appointment_options": appointment_ids or None})

    def forget(self, *fields: str) -> "ConversationState":
        """Drop collected fields so they are asked for again."""
        if not self.pending_action:
            return self
        draft = self.pending_action.model_copy(update={name: None for name in fields})
        return self.model_copy(update={"pending_action": draft, "missing_info": draft.missing()})


# ============== Store ==============

class ConversationStore:
    """
    Durable per-conversation dialogue state.

    State lives in ``conversations.state`` as JSON so a booking can span
    turns separated by restarts.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, conversation_id: int) -> Conversation:
        conversation = await self.db.get(Conversation, conversation_id)
        if not conversation:
            raise ValueError(f"Conversation not found: {conversation_id}")
        return conversation

    async def load(self, conversation_id: int) -> ConversationState | None:
        conversation = await self._get(conversation_id)
        if not conversation.state:
            return None
        try:
            return ConversationState.model_validate(conversation.state)
        except SchemaError:
            logger.warning("Discarding unreadable state for conversation %s", conversation_id)
            return None

    async def save(self, conversation_id: int, state: ConversationState | None) -> None:
        """Persist ``state``; ``None`` clears it."""
        conversation = await self._get(conversation_id)
        conversation.state = state.model_dump(mode="json") if state else None
        conversation.updated_at = dt.datetime.utcnow()
        await self.db.commit()


# ============== Message log ==============

class MessageLog:
    """Append-only transcript of a conversation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, conversation_id: int, role: str, content: str, metadata: dict | None = None) -> None:
        self.db.add(ConversationMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            message_metadata=metadata,
            created_at=dt.datetime.utcnow(),
        ))
        conversation = await self.db.get(Conversation, conversation_id)
        if conversation:
            conversation.last_message_at = dt.datetime.utcnow()
        await self.db.commit()

    async def recent(self, conversation_id: int, limit: int = 10) -> list[dict]:
        """Last ``limit`` turns, oldest first, as ``{"role", "content"}`` dicts."""
        result = await self.db.execute(
            select(ConversationMessage)
            .where(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())
            .limit(limit)
        )
        history = list(result.scalars().all())
        history.reverse()
        return [{"role": msg.role, "content": msg.content} for msg in history]

from pydantic import BaseModel


# ============== Chat turn ==============

class ChatReply(BaseModel):
    """What the dialogue driver returns for a single user message."""
    conversation_id: int
    reply: str
    intent: str | None = None
    out_of_scope: bool = False
    appointment_id: int | None = None
    missing_info: list[str] = []
    available_slots: list[str] = []

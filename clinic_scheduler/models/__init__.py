# clinic_scheduler/models/__init__.py

from clinic_scheduler.core.database import Base

# Catalog + people
from clinic_scheduler.models.patient import Patient, NotificationPreference
from clinic_scheduler.models.service import Service
from clinic_scheduler.models.dentist import Dentist

# Calendar
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.waitlist_entry import WaitlistEntry

# Dialogue
from clinic_scheduler.models.conversation import Conversation
from clinic_scheduler.models.conversation_message import ConversationMessage

__all__ = [
    "Base",
    "Patient",
    "NotificationPreference",
    "Service",
    "Dentist",
    "Appointment",
    "WaitlistEntry",
    "Conversation",
    "ConversationMessage",
]

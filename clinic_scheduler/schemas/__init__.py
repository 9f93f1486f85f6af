from clinic_scheduler.schemas.appointment import AppointmentRead, SlotAvailability
from clinic_scheduler.schemas.conversation import ChatReply
from clinic_scheduler.schemas.waitlist import (
    WaitlistDetail,
    WaitlistEntryRead,
    WaitlistError,
    WaitlistRunReport,
)

__all__ = [
    "AppointmentRead",
    "SlotAvailability",
    "ChatReply",
    "WaitlistDetail",
    "WaitlistEntryRead",
    "WaitlistError",
    "WaitlistRunReport",
]

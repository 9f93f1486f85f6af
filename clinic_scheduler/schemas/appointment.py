import datetime as dt
from pydantic import BaseModel


# ============== Availability ==============

class SlotAvailability(BaseModel):
    """Free start times for one day."""
    date: dt.date
    dentist_id: int | None = None
    available: bool
    slots: list[str] = []


# ============== Appointments ==============

class AppointmentRead(BaseModel):
    """Appointment as reported back to the dialogue layer."""
    id: int
    patient_id: int
    dentist_id: int | None = None
    service_id: int | None = None
    date: dt.date
    time: dt.time
    duration_minutes: int
    status: str
    has_been_rescheduled: bool = False
    reschedule_count: int = 0
    has_been_cancelled: bool = False
    cancel_count: int = 0
    notes: str | None = None
    created_at: dt.datetime | None = None

    class Config:
        from_attributes = True

    @property
    def time_label(self) -> str:
        return self.time.strftime("%H:%M")

from pydantic import BaseModel
from datetime import date, datetime, time


# ============== Waitlist entries ==============

class WaitlistEntryRead(BaseModel):
    id: int
    patient_id: int
    preferred_date: date
    preferred_time: time | None = None
    service_id: int | None = None
    dentist_id: int | None = None
    status: str
    auto_book: bool
    notified_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


# ============== Reconciler report ==============

class WaitlistError(BaseModel):
    waitlist_id: int
    message: str


class WaitlistDetail(BaseModel):
    waitlist_id: int
    patient_id: int
    preferred_date: date
    preferred_time: str | None = None
    auto_booked: bool = False
    appointment_id: int | None = None
    channels: list[str] = []


class WaitlistRunReport(BaseModel):
    """Outcome of one ``process_active_entries`` pass."""
    processed: int = 0
    notified: int = 0
    auto_booked: int = 0
    errors: list[WaitlistError] = []
    details: list[WaitlistDetail] = []
    finished_at: datetime | None = None

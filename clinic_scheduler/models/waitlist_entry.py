from datetime import datetime, date, time
from sqlalchemy import Integer, Boolean, Date, Time, DateTime, ForeignKey, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_scheduler.core.database import Base


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index("ix_waitlist_status_date", "status", "preferred_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(Integer, ForeignKey("patients.id"), nullable=False)
    preferred_date: Mapped[date] = mapped_column(Date, nullable=False)
    preferred_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    service_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("services.id"), nullable=True)
    dentist_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("dentists.id"), nullable=True)
    status: Mapped[str] = mapped_column(
        Enum('active', 'notified', 'converted', name='waitlist_status_enum'),
        default="active"
    )
    auto_book: Mapped[bool] = mapped_column(Boolean, default=False)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="waitlist_entries")
    service = relationship("Service")
    dentist = relationship("Dentist")

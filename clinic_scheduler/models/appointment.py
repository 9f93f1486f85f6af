import datetime as dt
from sqlalchemy import Integer, Text, Boolean, Date, Time, DateTime, ForeignKey, Enum, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_scheduler.core.database import Base


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_date_dentist", "date", "dentist_id"),
        # At most one active appointment per (patient, service, day)
        Index(
            "uq_appointments_active_patient_service_date",
            "patient_id", "service_id", "date",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(Integer, ForeignKey("patients.id"), nullable=False)
    dentist_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("dentists.id"), nullable=True)
    service_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("services.id"), nullable=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    status: Mapped[str] = mapped_column(
        Enum('scheduled', 'completed', 'cancelled', name='appointment_status_enum'),
        default="scheduled"
    )
    has_been_rescheduled: Mapped[bool] = mapped_column(Boolean, default=False)
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)
    has_been_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    cancel_count: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=dt.datetime.utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    dentist = relationship("Dentist", back_populates="appointments")
    service = relationship("Service", back_populates="appointments")

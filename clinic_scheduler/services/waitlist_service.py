import asyncio
import logging
from datetime import date, datetime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select

from clinic_scheduler.core.clock import Clock, clinic_now
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import (
    AlreadyTerminal,
    BookingError,
    DuplicateConflict,
    NotFoundOrForbidden,
    ValidationError,
)
from clinic_scheduler.models import Patient, Service, WaitlistEntry
from clinic_scheduler.schemas import WaitlistDetail, WaitlistEntryRead, WaitlistError, WaitlistRunReport
from clinic_scheduler.services.booking_service import BookingService
from clinic_scheduler.services.notifications import (
    NotificationChannel,
    NotificationPreferenceService,
    default_channel,
    waitlist_email,
    waitlist_sms,
)
from clinic_scheduler.services.slot_service import SlotService, format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)

AUTO_BOOK_NOTE = "Auto-booked from waitlist"


class WaitlistService:
    """Patients joining and leaving the waitlist."""

    def __init__(self, db: AsyncSession, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock

    async def add_entry(
        self,
        patient_id: int,
        preferred_date: date,
        preferred_time: str | None = None,
        service_id: int | None = None,
        dentist_id: int | None = None,
        auto_book: bool = False,
    ) -> WaitlistEntryRead:
        if preferred_date < self.clock().date():
            raise ValidationError(f"{preferred_date.isoformat()} is in the past. Please choose a future date.")
        start = parse_hhmm(preferred_time) if preferred_time else None

        query = select(WaitlistEntry).where(
            WaitlistEntry.patient_id == patient_id,
            WaitlistEntry.preferred_date == preferred_date,
            WaitlistEntry.status == "active",
        )
        if service_id is not None:
            query = query.where(WaitlistEntry.service_id == service_id)
        result = await self.db.execute(query.limit(1))
        if result.scalar_one_or_none():
            raise DuplicateConflict(f"You are already on the waitlist for {preferred_date.isoformat()}.")

        entry = WaitlistEntry(
            patient_id=patient_id,
            preferred_date=preferred_date,
            preferred_time=start,
            service_id=service_id,
            dentist_id=dentist_id,
            status="active",
            auto_book=auto_book,
        )
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)

        logger.info("Patient %s joined the waitlist for %s (entry %s)", patient_id, preferred_date, entry.id)
        return WaitlistEntryRead.model_validate(entry)

    async def withdraw(self, patient_id: int, entry_id: int) -> None:
        entry = await self.db.get(WaitlistEntry, entry_id)
        if not entry or entry.patient_id != patient_id:
            raise NotFoundOrForbidden("Waitlist entry not found or you do not have permission to change it.")
        if entry.status != "active":
            raise AlreadyTerminal(f"This waitlist entry is already {entry.status}.")

        await self.db.delete(entry)
        await self.db.commit()
        logger.info("Patient %s withdrew waitlist entry %s", patient_id, entry_id)

    async def list_active(self, patient_id: int) -> list[WaitlistEntryRead]:
        result = await self.db.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.patient_id == patient_id, WaitlistEntry.status == "active")
            .order_by(WaitlistEntry.preferred_date, WaitlistEntry.created_at)
        )
        return [WaitlistEntryRead.model_validate(e) for e in result.scalars().all()]


class WaitlistReconciler:
    """
    Scans active waitlist entries for freed capacity.

    Each entry is handled in its own session so one failure (a slot taken
    in the meantime, a database hiccup) is recorded in the report and the
    scan moves on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: NotificationChannel | None = None,
        clock: Clock = clinic_now,
    ):
        self.session_factory = session_factory
        self.channel = channel or default_channel()
        self.clock = clock

    async def _active_entry_ids(self) -> list[int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(WaitlistEntry.id)
                .where(
                    WaitlistEntry.status == "active",
                    WaitlistEntry.preferred_date >= self.clock().date(),
                )
                .order_by(WaitlistEntry.preferred_date, WaitlistEntry.created_at, WaitlistEntry.id)
            )
            return list(result.scalars().all())

    async def process_active_entries(self) -> WaitlistRunReport:
        entry_ids = await self._active_entry_ids()
        report = WaitlistRunReport(processed=len(entry_ids))

        for entry_id in entry_ids:
            try:
                detail = await self._process_entry(entry_id)
            except BookingError as exc:
                logger.info("Waitlist entry %s not booked: %s", entry_id, exc.message)
                report.errors.append(WaitlistError(waitlist_id=entry_id, message=exc.message))
                continue
            except Exception as exc:
                logger.exception("Error processing waitlist entry %s", entry_id)
                report.errors.append(WaitlistError(waitlist_id=entry_id, message=str(exc)))
                continue

            if detail is None:
                continue
            report.notified += 1
            if detail.auto_booked:
                report.auto_booked += 1
            report.details.append(detail)

        report.finished_at = datetime.utcnow()
        logger.info(
            "Waitlist run: %d processed, %d notified, %d auto-booked, %d errors",
            report.processed, report.notified, report.auto_booked, len(report.errors),
        )
        return report

    async def _notify(
        self,
        entry: WaitlistEntry,
        patient: Patient,
        service_name: str | None,
        time_display: str | None,
        auto_booked: bool,
        channels: list[str],
    ) -> list[str]:
        """Send the notice on every channel; returns the ones that went out."""
        sent = []
        for channel in channels:
            try:
                if channel == "email":
                    subject, html, text = waitlist_email(
                        patient.first_name, service_name, entry.preferred_date, time_display, auto_booked
                    )
                    ok = await self.channel.send_email(patient.email, subject, html, text)
                else:
                    ok = await self.channel.send_sms(
                        patient.phone, waitlist_sms(entry.preferred_date, time_display, auto_booked)
                    )
            except Exception:
                logger.exception("Waitlist %s notice for entry %s failed", channel, entry.id)
                ok = False
            if ok:
                sent.append(channel)
            else:
                logger.warning("Waitlist %s notice for entry %s was not delivered", channel, entry.id)
        return sent

    async def _process_entry(self, entry_id: int) -> WaitlistDetail | None:
        async with self.session_factory() as db:
            entry = await db.get(WaitlistEntry, entry_id)
            if not entry or entry.status != "active":
                return None

            patient = await db.get(Patient, entry.patient_id)
            service = await db.get(Service, entry.service_id) if entry.service_id is not None else None
            duration = (service.duration_minutes if service else None) or settings.DEFAULT_APPOINTMENT_MINUTES
            time_display = format_hhmm(entry.preferred_time) if entry.preferred_time else None

            # Exact slot when a time was asked for, otherwise anything that day
            slots = SlotService(db, clock=self.clock)
            if time_display:
                has_capacity = await slots.is_slot_free(
                    entry.preferred_date, entry.preferred_time, entry.dentist_id, duration
                )
            else:
                availability = await slots.compute_slots(entry.preferred_date, entry.dentist_id, duration)
                has_capacity = availability.available
            if not has_capacity:
                return None

            preferences = await NotificationPreferenceService(db).get_preferences(entry.patient_id)
            channels = []
            if preferences["email_enabled"] and patient and patient.email:
                channels.append("email")
            if preferences["sms_enabled"] and patient and patient.phone:
                channels.append("sms")
            if not channels:
                logger.warning(
                    "Waitlist entry %s has capacity but patient %s has no enabled notification channel",
                    entry_id, entry.patient_id,
                )
                return None

            appointment_id = None
            if entry.auto_book and time_display:
                booking = BookingService(db, slots=slots, clock=self.clock)
                appointment_id = await booking.book(
                    entry.patient_id,
                    entry.preferred_date,
                    time_display,
                    service_id=entry.service_id,
                    dentist_id=entry.dentist_id,
                    notes=AUTO_BOOK_NOTE,
                )

            auto_booked = appointment_id is not None
            # The booking is committed by now; the entry is marked whatever the channels do
            sent = await self._notify(
                entry, patient, service.name if service else None, time_display, auto_booked, channels
            )

            entry.status = "converted" if auto_booked else "notified"
            entry.notified_at = datetime.utcnow()
            detail = WaitlistDetail(
                waitlist_id=entry.id,
                patient_id=entry.patient_id,
                preferred_date=entry.preferred_date,
                preferred_time=time_display,
                auto_booked=auto_booked,
                appointment_id=appointment_id,
                channels=channels,
            )
            await db.commit()

        logger.info(
            "Waitlist entry %s processed (auto_booked=%s, appointment=%s, delivered=%s)",
            entry_id, auto_booked, appointment_id, sent,
        )
        return detail


async def run_waitlist_forever(
    interval: float | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    channel: NotificationChannel | None = None,
) -> None:
    """Run the reconciler every ``interval`` seconds until cancelled."""
    if session_factory is None:
        from clinic_scheduler.core.database import async_session as session_factory

    interval = interval or settings.WAITLIST_INTERVAL_SECONDS
    reconciler = WaitlistReconciler(session_factory, channel=channel)
    logger.info("Waitlist reconciler started, running every %ss", interval)
    while True:
        try:
            await reconciler.process_active_entries()
        except Exception:
            logger.exception("Waitlist run failed, retrying in %ss", interval)
        await asyncio.sleep(interval)

import logging
from datetime import date
from typing import Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.config import settings
from clinic_scheduler.models import NotificationPreference

logger = logging.getLogger(__name__)


# ============== Channels ==============

class NotificationChannel(Protocol):
    """Outbound email/SMS. Each send reports success instead of raising."""

    async def send_email(self, address: str, subject: str, html: str, text: str) -> bool: ...

    async def send_sms(self, number: str, text: str) -> bool: ...


class HttpNotificationChannel:
    """Posts messages as JSON to the configured email and SMS webhooks."""

    def __init__(
        self,
        email_url: str | None = None,
        sms_url: str | None = None,
        timeout: float | None = None,
    ):
        self.email_url = email_url or settings.EMAIL_WEBHOOK_URL
        self.sms_url = sms_url or settings.SMS_WEBHOOK_URL
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS

    async def _post(self, url: str | None, payload: dict, kind: str) -> bool:
        if not url:
            logger.warning("No %s webhook configured, message to %s not sent", kind, payload.get("to"))
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Failed to send %s to %s: %s", kind, payload.get("to"), exc)
            return False
        return True

    async def send_email(self, address: str, subject: str, html: str, text: str) -> bool:
        return await self._post(
            self.email_url,
            {"to": address, "subject": subject, "html": html, "text": text},
            "email",
        )

    async def send_sms(self, number: str, text: str) -> bool:
        return await self._post(self.sms_url, {"to": number, "text": text}, "sms")


class LoggingNotificationChannel:
    """Writes messages to the log. Used when no webhook is configured."""

    async def send_email(self, address: str, subject: str, html: str, text: str) -> bool:
        logger.info("EMAIL to %s: %s\n%s", address, subject, text)
        return True

    async def send_sms(self, number: str, text: str) -> bool:
        logger.info("SMS to %s: %s", number, text)
        return True


def default_channel() -> NotificationChannel:
    if settings.EMAIL_WEBHOOK_URL or settings.SMS_WEBHOOK_URL:
        return HttpNotificationChannel()
    return LoggingNotificationChannel()


# ============== Preferences ==============

class NotificationPreferenceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_preferences(self, patient_id: int) -> dict:
        """``{"email_enabled", "sms_enabled"}``; patients without a row get email only."""
        preference = await self.db.get(NotificationPreference, patient_id)
        if not preference:
            return {"email_enabled": True, "sms_enabled": False}
        return {
            "email_enabled": bool(preference.email_enabled),
            "sms_enabled": bool(preference.sms_enabled),
        }


# ============== Waitlist messages ==============

def waitlist_email(
    first_name: str | None,
    service_name: str | None,
    preferred_date: date,
    time_display: str | None,
    auto_booked: bool,
) -> tuple[str, str, str]:
    """Subject, HTML body and plain-text body for a waitlist notice."""
    service_name = service_name or "your appointment"
    time_display = time_display or "any available time"
    pretty_date = preferred_date.strftime("%B %d, %Y")

    if auto_booked:
        subject = "Good news! Your waitlisted appointment has been booked"
        lead = f"We have automatically booked {service_name} from your waitlist request."
        follow_up = "You can view or manage this appointment from your upcoming appointments or the chat assistant."
    else:
        subject = "Good news! A waitlist slot is now available"
        lead = f"A slot has opened up for {service_name} from your waitlist request."
        follow_up = "You can now book this time by asking the dental assistant."

    html = f"""
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2>Hi {first_name or ''},</h2>
    <p>{lead}</p>
    <ul style="list-style: none; padding: 0;">
      <li><strong>Date:</strong> {pretty_date}</li>
      <li><strong>Time:</strong> {time_display}</li>
    </ul>
    <p>{follow_up}</p>
    <p>Best regards,<br><strong>{settings.CLINIC_NAME} Team</strong></p>
  </body>
</html>
"""
    text = (
        f"Hi {first_name or ''},\n\n{lead}\n\nDate: {pretty_date}\nTime: {time_display}\n\n"
        f"{follow_up}\n\nBest regards,\n{settings.CLINIC_NAME} Team\n"
    )
    return subject, html, text


def waitlist_sms(preferred_date: date, time_display: str | None, auto_booked: bool) -> str:
    pretty_date = preferred_date.strftime("%B %d, %Y")
    time_display = time_display or "any available time"
    if auto_booked:
        return f"{settings.CLINIC_NAME}: Your waitlisted appointment on {pretty_date} at {time_display} has been booked."
    return (
        f"{settings.CLINIC_NAME}: A slot is now available on {pretty_date} at {time_display} "
        f"from your waitlist. You can book it now."
    )

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from clinic_scheduler.core.config import settings

Clock = Callable[[], datetime]


def clinic_now() -> datetime:
    """Naive wall-clock time in the clinic's timezone."""
    return datetime.now(ZoneInfo(settings.CLINIC_TIMEZONE)).replace(tzinfo=None)

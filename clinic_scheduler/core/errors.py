"""Expected, recoverable scheduling outcomes.

Every ``BookingError`` carries a ``message`` that can be shown to the patient
verbatim. Infrastructure failures are not part of this hierarchy and are left
to propagate (``sqlalchemy.exc.SQLAlchemyError`` and friends).
"""


class BookingError(Exception):
    """Base class for refusals raised by the booking transaction core."""

    code = "booking_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BookingError):
    """Malformed or past date, unparseable time."""

    code = "validation_error"


class DuplicateConflict(BookingError):
    """An equivalent active appointment already exists."""

    code = "duplicate_conflict"

    def __init__(self, message: str, existing=None):
        self.existing = existing
        super().__init__(message)


class SlotUnavailable(BookingError):
    """The requested time is not free; ``slots`` lists what still is."""

    code = "slot_unavailable"

    def __init__(self, message: str, slots: list[str] | None = None):
        self.slots = slots or []
        super().__init__(message)


class NotFoundOrForbidden(BookingError):
    code = "not_found"


class AlreadyTerminal(BookingError):
    code = "already_terminal"


class OracleUnavailable(Exception):
    """The language-model oracle timed out, errored or returned garbage."""

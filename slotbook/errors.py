"""
Error taxonomy for the scheduling core.

Every failure the core reports is a SchedulingError carrying a kind, an
HTTP-style status code and a user-facing message; the API layer turns them
into structured responses.
"""

from pydantic import ValidationError


class SchedulingError(Exception):
    kind = "Unexpected"
    status_code = 500
    default_message = "Something went very wrong!"
    is_operational = True

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "kind": self.kind,
            "message": self.message,
        }


class InvalidInput(SchedulingError, ValueError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Invalid input."


class AuthenticationRequired(SchedulingError):
    kind = "AuthenticationRequired"
    status_code = 401
    default_message = "You are not logged in! Please log in to get access"


class PermissionDenied(SchedulingError):
    kind = "PermissionDenied"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFound(SchedulingError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found."


class SlotNotFound(NotFound):
    kind = "SlotNotFound"
    default_message = "Matching available slot not found."


class AppointmentNotFound(NotFound):
    kind = "AppointmentNotFound"
    default_message = "Original appointment not found."


class WorkerNotFound(NotFound):
    kind = "WorkerNotFound"
    default_message = "Worker not found."


class Conflict(SchedulingError):
    kind = "Conflict"
    status_code = 409
    default_message = "The slot changed while booking. Please try again."


class NoWorkerAvailable(Conflict):
    kind = "NoWorkerAvailable"
    default_message = "No available workers for this time slot."


class DuplicateBooking(Conflict):
    kind = "DuplicateBooking"
    default_message = "Client already holds a booking in this time range."


class SlotFullyBooked(Conflict):
    kind = "SlotFullyBooked"
    default_message = "This slot is fully booked."


class WorkerUnavailable(Conflict):
    kind = "WorkerUnavailable"
    default_message = (
        "The assigned worker is already booked in this time range."
    )


class Unexpected(SchedulingError):
    is_operational = False


class PersistenceError(Unexpected):
    kind = "PersistenceError"
    default_message = "The record store failed to complete the operation."


def to_scheduling_error(exc: Exception) -> SchedulingError:
    """
    Map any exception raised inside the core onto the taxonomy above.
    Unknown failures become Unexpected with the original kept as __cause__.
    """
    if isinstance(exc, SchedulingError):
        return exc
    if isinstance(exc, ValidationError):
        messages = "; ".join(e["msg"] for e in exc.errors())
        error = InvalidInput(f"Validation failed. {messages}")
    else:
        error = Unexpected(str(exc) or exc.__class__.__name__)
    error.__cause__ = exc
    return error

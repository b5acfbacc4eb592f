"""
Booking engine errors.

Every error the engine raises derives from BookingError and carries the HTTP
status the API layer should answer with, a stable machine code, and whether a
caller may safely retry. Only ConflictError is retryable.
"""


class BookingError(Exception):
    status_code = 400
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


# Validation: bad input shape
class BookingValidationError(BookingError):
    status_code = 400


class AccountSuspendedError(BookingError):
    status_code = 403


class NotFoundError(BookingError):
    status_code = 404


class BookingNotFoundError(NotFoundError):
    def __init__(self, booking_id: str):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class AccessDeniedError(BookingError):
    status_code = 403


class ForbiddenTransitionError(AccessDeniedError):
    pass


# Preconditions: deterministic, never retried automatically
class PreconditionError(BookingError):
    status_code = 409


class ProviderUnavailableError(PreconditionError):
    status_code = 404


class ServiceNotFoundError(PreconditionError):
    status_code = 404


class DuplicateActiveBookingError(PreconditionError):
    pass


class ProviderBusyError(DuplicateActiveBookingError):
    pass


class ScheduleConflictError(PreconditionError):
    pass


class InvalidTransitionError(PreconditionError):
    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(message or f"Invalid booking transition: {current} -> {target}")
        self.current = current
        self.target = target


class TerminalStateError(InvalidTransitionError):
    def __init__(self, current: str, target: str):
        super().__init__(current, target, f"Cannot modify a {current.lower()} booking")


class CompletionRequiresCodeError(InvalidTransitionError):
    def __init__(self, current: str):
        super().__init__(current, "COMPLETED", "Completion requires code verification; use the completion flow")


class CompletionNotInitiatedError(PreconditionError):
    status_code = 400


class InvalidCompletionCodeError(PreconditionError):
    status_code = 400


# Transient: lock or isolation failure, safe to retry with backoff
class ConflictError(BookingError):
    status_code = 409
    retryable = True

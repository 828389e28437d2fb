"""Exceptions raised by the service layer and mapped to HTTP responses by the router."""


class RefusalError(Exception):
    """
    Raised when the acting user is not allowed to do what they asked.
    This is NOT an error - it's the permission rules working correctly.
    """
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidTransitionError(ValueError):
    """The requested status is not reachable from the current one."""


class VerificationPayloadError(ValueError):
    """Missing or out-of-range rating, or a low rating without a comment."""


class ConflictError(Exception):
    """A write was rejected by a uniqueness constraint."""


class SlotConflictError(ConflictError):
    """Someone else filled this verification slot first."""

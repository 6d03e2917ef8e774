"""Domain exceptions raised by the ranking and challenge engines.

Every error is caller-recoverable and carries a message suitable for
showing to the user. The HTTP layer maps them to status codes in
``fitrank.middleware.error_handler``.
"""


class FitRankError(Exception):
    """Base exception for engine errors."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(FitRankError):
    """Raised when a duel, competition or group id is unknown."""

    code = "not_found"


class AuthorizationError(FitRankError):
    """Raised when the acting user may not perform the requested transition."""

    code = "forbidden"


class ConflictError(FitRankError):
    """Raised for a duplicate open contest or an already-queued group."""

    code = "conflict"


class InvalidStateError(FitRankError):
    """Raised when a transition is attempted from a state that does not allow it."""

    code = "invalid_state"


class ValidationError(FitRankError):
    """Raised for malformed requests (self-challenge, bad duration, bad delta)."""

    code = "validation_error"

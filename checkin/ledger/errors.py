"""Error taxonomy surfaced by the queue ledger.

Store-level failures are translated into these types at the ledger boundary,
so callers never see driver exceptions or backend error codes.
"""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base error for queue ledger issues."""


class ValidationError(LedgerError):
    """Raised when a name or email is malformed. User-correctable."""

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message)
        self.field = field


class DuplicateError(LedgerError):
    """Raised when the same identity tries to join twice."""


class RateLimitedError(LedgerError):
    """Raised when join attempts exceed the allowed rate."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Too many attempts. Please wait {int(retry_after)} seconds.")
        self.retry_after = retry_after


class AuthorizationError(LedgerError):
    """Raised when an operator action lacks a valid capability."""


class ConflictError(LedgerError):
    """Raised when ticket issuance kept colliding after bounded retries."""


class StoreUnavailableError(LedgerError):
    """Raised when the backing store cannot be reached. Try again later."""


class VerifierUnavailableError(LedgerError):
    """Raised when the admin credential check cannot be reached. Try again later."""


class InvalidTransitionError(LedgerError):
    """Raised when a ticket status change breaks the lifecycle."""

"""Queue ledger domain: tickets, serving state and the error taxonomy.

``QueueLedger`` lives in :mod:`checkin.ledger.service` and is imported from
there so that the security package can depend on the error types here.
"""

from .errors import (
    AuthorizationError,
    ConflictError,
    DuplicateError,
    InvalidTransitionError,
    LedgerError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
    VerifierUnavailableError,
)
from .models import AdvanceResult, LedgerState, QueueSnapshot, Ticket, TicketPosition
from .state import TicketStateMachine, TicketStatus, derive_status

__all__ = [
    "AdvanceResult",
    "AuthorizationError",
    "ConflictError",
    "DuplicateError",
    "InvalidTransitionError",
    "LedgerError",
    "LedgerState",
    "QueueSnapshot",
    "RateLimitedError",
    "StoreUnavailableError",
    "Ticket",
    "TicketPosition",
    "TicketStateMachine",
    "TicketStatus",
    "ValidationError",
    "VerifierUnavailableError",
    "derive_status",
]

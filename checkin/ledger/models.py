from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from .state import TicketStatus, derive_status


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Ticket:
    """One entrant's place in line.

    Status is not stored on the ticket; it is derived from the serving
    pointer whenever it is read.
    """

    ticket: int
    name: str
    email: str | None
    created_at: datetime

    def status_at(self, current_serving: int) -> TicketStatus:
        return derive_status(self.ticket, current_serving)


@dataclass(slots=True, frozen=True)
class LedgerState:
    """Singleton record tracking which ticket number is being served."""

    current_serving: int
    ticket_count: int
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def initial(cls) -> "LedgerState":
        return cls(current_serving=1, ticket_count=0)

    @property
    def has_next(self) -> bool:
        return self.current_serving < self.ticket_count

    def position_of(self, ticket: int) -> "TicketPosition | None":
        """Place ``ticket`` against the pointer, or ``None`` if it was never issued."""

        if ticket < 1 or ticket > self.ticket_count:
            return None
        return TicketPosition(
            ticket=ticket,
            status=derive_status(ticket, self.current_serving),
            current_serving=self.current_serving,
        )


@dataclass(slots=True, frozen=True)
class TicketPosition:
    ticket: int
    status: TicketStatus
    current_serving: int

    @property
    def people_ahead(self) -> int:
        return max(0, self.ticket - self.current_serving)


@dataclass(slots=True, frozen=True)
class AdvanceResult:
    """Outcome of an operator advance request."""

    state: LedgerState
    advanced: bool
    reason: str | None = None


@dataclass(slots=True, frozen=True)
class QueueSnapshot:
    """Authoritative read model handed to display layers."""

    state: LedgerState
    tickets: Sequence[Ticket]
    mode: str = "memory"

    def status_of(self, ticket: Ticket) -> TicketStatus:
        return ticket.status_at(self.state.current_serving)

    @property
    def now_serving(self) -> Ticket | None:
        for entry in self.tickets:
            if entry.ticket == self.state.current_serving:
                return entry
        return None

    @property
    def waiting_count(self) -> int:
        return sum(1 for entry in self.tickets if entry.ticket > self.state.current_serving)

"""Store contract shared by the hosted and in-memory backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Sequence

from checkin.ledger.models import LedgerState, Ticket

QUEUE_ENTRIES_TABLE = "queue_entries"
SYSTEM_STATE_TABLE = "system_state"
STATE_ROW_ID = 1


class StoreError(RuntimeError):
    """Base error raised by store implementations."""


class StoreUnavailable(StoreError):
    """The backend could not be reached or failed transiently."""


class StoreConflict(StoreError):
    """A ticket number collided with an existing row."""


class StoreDuplicate(StoreError):
    """An email is already present on another ticket."""


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A "something changed" signal. Payloads are never applied as deltas."""

    table: str
    operation: str = "*"


class Store(Protocol):
    """Durable storage plus change notification for the ledger."""

    mode: str

    async def ensure_schema(self) -> None:
        ...

    async def load_state(self) -> LedgerState:
        ...

    async def list_tickets(self) -> Sequence[Ticket]:
        ...

    async def load_snapshot(self) -> tuple[LedgerState, Sequence[Ticket]]:
        """Read the state and every ticket as one consistent view."""
        ...

    async def issue_ticket(self, *, name: str, email: str | None) -> Ticket:
        """Atomically assign the next ticket number and persist the entry."""
        ...

    async def compare_and_advance(self, expected: int) -> LedgerState | None:
        """Move ``current_serving`` from ``expected`` to ``expected + 1``.

        Returns ``None`` when the pointer is no longer ``expected`` or
        nothing is left to serve.
        """
        ...

    async def reset_all(self) -> LedgerState:
        ...

    def subscribe(self) -> AsyncIterator[ChangeEvent]:
        ...

    async def close(self) -> None:
        ...

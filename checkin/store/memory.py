from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator, Sequence

from checkin.ledger.models import LedgerState, Ticket

from .base import QUEUE_ENTRIES_TABLE, SYSTEM_STATE_TABLE, ChangeEvent, StoreDuplicate

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Process-local store used for demo mode, degraded mode and tests."""

    def __init__(self, *, mode: str = "memory") -> None:
        self.mode = mode
        self._lock = asyncio.Lock()
        self._state = LedgerState.initial()
        self._tickets: dict[int, Ticket] = {}
        self._subscribers: set[asyncio.Queue[ChangeEvent]] = set()

    async def ensure_schema(self) -> None:
        return None

    async def load_state(self) -> LedgerState:
        return self._state

    async def list_tickets(self) -> Sequence[Ticket]:
        return [self._tickets[number] for number in sorted(self._tickets)]

    async def load_snapshot(self) -> tuple[LedgerState, Sequence[Ticket]]:
        async with self._lock:
            return self._state, [self._tickets[number] for number in sorted(self._tickets)]

    async def issue_ticket(self, *, name: str, email: str | None) -> Ticket:
        async with self._lock:
            if email is not None and any(entry.email == email for entry in self._tickets.values()):
                raise StoreDuplicate(f"{email} already joined")
            now = datetime.now(timezone.utc)
            number = self._state.ticket_count + 1
            ticket = Ticket(ticket=number, name=name, email=email, created_at=now)
            self._tickets[number] = ticket
            self._state = replace(self._state, ticket_count=number, updated_at=now)
        self._publish(ChangeEvent(QUEUE_ENTRIES_TABLE, "INSERT"))
        self._publish(ChangeEvent(SYSTEM_STATE_TABLE, "UPDATE"))
        return ticket

    async def compare_and_advance(self, expected: int) -> LedgerState | None:
        async with self._lock:
            state = self._state
            if state.current_serving != expected or not state.has_next:
                return None
            self._state = replace(
                state,
                current_serving=expected + 1,
                updated_at=datetime.now(timezone.utc),
            )
            advanced = self._state
        self._publish(ChangeEvent(SYSTEM_STATE_TABLE, "UPDATE"))
        return advanced

    async def reset_all(self) -> LedgerState:
        async with self._lock:
            self._tickets.clear()
            self._state = replace(LedgerState.initial(), updated_at=datetime.now(timezone.utc))
            state = self._state
        self._publish(ChangeEvent(QUEUE_ENTRIES_TABLE, "DELETE"))
        self._publish(ChangeEvent(SYSTEM_STATE_TABLE, "UPDATE"))
        return state

    async def subscribe(self) -> AsyncIterator[ChangeEvent]:
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    async def close(self) -> None:
        self._subscribers.clear()

    def _publish(self, event: ChangeEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)
        logger.debug("Published %s change on %s", event.operation, event.table)

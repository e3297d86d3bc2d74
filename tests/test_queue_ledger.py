from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from checkin.ledger.errors import (
    AuthorizationError,
    ConflictError,
    DuplicateError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
)
from checkin.ledger.models import LedgerState, Ticket
from checkin.ledger.rate_limit import SlidingWindowRateLimiter
from checkin.ledger.service import NOTHING_TO_ADVANCE, STALE_ADVANCE, QueueLedger
from checkin.ledger.state import TicketStatus
from checkin.security.operator import OperatorCapability
from checkin.store.base import StoreConflict, StoreUnavailable
from checkin.store.memory import InMemoryStore


def _ticket(number: int, name: str = "Alice") -> Ticket:
    return Ticket(ticket=number, name=name, email=None, created_at=datetime.now(timezone.utc))


class DummyStore:
    mode = "memory"

    def __init__(self):
        self.issue_ticket = AsyncMock()
        self.load_state = AsyncMock(return_value=LedgerState.initial())
        self.list_tickets = AsyncMock(return_value=[])
        self.load_snapshot = AsyncMock(return_value=(LedgerState.initial(), []))
        self.compare_and_advance = AsyncMock()
        self.reset_all = AsyncMock(return_value=LedgerState.initial())


class InterleavingStore(InMemoryStore):
    """Yield to the loop before every read and issue so callers interleave."""

    async def load_state(self):
        state = await super().load_state()
        await asyncio.sleep(0)
        return state

    async def issue_ticket(self, *, name, email):
        await asyncio.sleep(0)
        return await super().issue_ticket(name=name, email=email)


def _assert_invariants(snapshot):
    current = snapshot.state.current_serving
    statuses = [snapshot.status_of(ticket) for ticket in snapshot.tickets]
    assert statuses.count(TicketStatus.COMPLETED) == max(0, current - 1)
    assert statuses.count(TicketStatus.CURRENT) <= 1
    for ticket, status in zip(snapshot.tickets, statuses):
        assert (status == TicketStatus.COMPLETED) == (ticket.ticket < current)
        assert (status == TicketStatus.WAITING) == (ticket.ticket > current)


@pytest.mark.asyncio
async def test_join_advance_scenario(ledger, operator):
    alice = await ledger.join("Alice")
    assert alice.ticket == 1
    assert await ledger.status_for(1) == TicketStatus.CURRENT

    bob = await ledger.join("Bob")
    assert bob.ticket == 2
    assert await ledger.status_for(2) == TicketStatus.WAITING

    result = await ledger.advance(operator)
    assert result.advanced
    assert result.state.current_serving == 2
    assert await ledger.status_for(1) == TicketStatus.COMPLETED
    assert await ledger.status_for(2) == TicketStatus.CURRENT
    _assert_invariants(await ledger.snapshot())


@pytest.mark.asyncio
async def test_ticket_numbers_strictly_increase(ledger, operator):
    numbers = []
    for index in range(6):
        numbers.append((await ledger.join(f"Guest {index}")).ticket)
        if index % 2:
            await ledger.advance(operator)
    assert numbers == [1, 2, 3, 4, 5, 6]
    _assert_invariants(await ledger.snapshot())


@pytest.mark.asyncio
async def test_concurrent_joins_receive_unique_consecutive_numbers(gate):
    ledger = QueueLedger(InterleavingStore(), gate, rate_limiter=SlidingWindowRateLimiter(max_attempts=100))
    await ledger.join("Early Bird")

    tickets = await asyncio.gather(*(ledger.join(f"Guest {index}") for index in range(25)))

    numbers = sorted(ticket.ticket for ticket in tickets)
    assert numbers == list(range(2, 27))


@pytest.mark.asyncio
async def test_advance_with_nothing_left_is_a_noop(ledger, operator):
    await ledger.join("Alice")
    before = await ledger.state()

    result = await ledger.advance(operator)

    assert not result.advanced
    assert result.reason == NOTHING_TO_ADVANCE
    assert result.state == before


@pytest.mark.asyncio
async def test_advance_on_empty_queue_is_a_noop(ledger, operator):
    result = await ledger.advance(operator)
    assert not result.advanced
    assert result.state.current_serving == 1


@pytest.mark.asyncio
async def test_concurrent_advances_never_share_a_base(gate, operator):
    ledger = QueueLedger(InterleavingStore(), gate)
    for name in ("Alice", "Bob", "Carol"):
        await ledger.join(name)

    results = await asyncio.gather(ledger.advance(operator), ledger.advance(operator))

    assert sum(result.advanced for result in results) == 1
    assert (await ledger.state()).current_serving == 2
    loser = next(result for result in results if not result.advanced)
    assert loser.reason == STALE_ADVANCE


@pytest.mark.asyncio
async def test_reset_then_join_starts_over(ledger, operator):
    for name in ("Alice", "Bob", "Carol"):
        await ledger.join(name)
    await ledger.advance(operator)

    state = await ledger.reset(operator)
    assert state.current_serving == 1
    assert state.ticket_count == 0
    assert list(await ledger.tickets()) == []

    alice = await ledger.join("Alice")
    assert alice.ticket == 1
    assert (await ledger.state()).current_serving == 1
    assert await ledger.status_for(1) == TicketStatus.CURRENT


@pytest.mark.asyncio
async def test_duplicate_email_is_rejected_case_insensitively(ledger):
    await ledger.join("A1", "guest@example.com")
    with pytest.raises(DuplicateError):
        await ledger.join("A1", "Guest@Example.com")


@pytest.mark.asyncio
async def test_same_name_with_different_emails_succeeds(ledger):
    first = await ledger.join("Al", "one@example.com")
    second = await ledger.join("Al", "two@example.com")
    assert (first.ticket, second.ticket) == (1, 2)


@pytest.mark.asyncio
async def test_invalid_input_never_reaches_store():
    store = DummyStore()
    ledger = QueueLedger(store, AsyncMock())
    with pytest.raises(ValidationError):
        await ledger.join("!")
    with pytest.raises(ValidationError):
        await ledger.join("Alice", "not-an-email")
    store.issue_ticket.assert_not_awaited()


@pytest.mark.asyncio
async def test_join_is_rate_limited_per_identity(store, gate):
    ledger = QueueLedger(store, gate, rate_limiter=SlidingWindowRateLimiter(max_attempts=3, window_seconds=60))
    for index in range(3):
        await ledger.join(f"Guest {index}", identity="10.0.0.1")

    with pytest.raises(RateLimitedError) as exc:
        await ledger.join("Guest 4", identity="10.0.0.1")
    assert 0 < exc.value.retry_after <= 60

    ticket = await ledger.join("Guest 5", identity="10.0.0.2")
    assert ticket.ticket == 4


@pytest.mark.asyncio
async def test_operator_actions_require_capability(ledger, gate):
    with pytest.raises(AuthorizationError):
        await ledger.advance(None)
    forged = OperatorCapability(operator_id="x", username="mallory", token="forged", issued_at=0.0)
    with pytest.raises(AuthorizationError):
        await ledger.reset(forged)


@pytest.mark.asyncio
async def test_join_retries_on_conflict(gate):
    store = DummyStore()
    store.issue_ticket.side_effect = [StoreConflict("dup"), StoreConflict("dup"), _ticket(7)]
    ledger = QueueLedger(store, gate, max_join_retries=3)

    ticket = await ledger.join("Alice")

    assert ticket.ticket == 7
    assert store.issue_ticket.await_count == 3


@pytest.mark.asyncio
async def test_join_gives_up_after_bounded_retries(gate):
    store = DummyStore()
    store.issue_ticket.side_effect = StoreConflict("dup")
    ledger = QueueLedger(store, gate, max_join_retries=2)

    with pytest.raises(ConflictError):
        await ledger.join("Alice")
    assert store.issue_ticket.await_count == 2


@pytest.mark.asyncio
async def test_store_failures_are_translated(gate, operator):
    store = DummyStore()
    store.issue_ticket.side_effect = StoreUnavailable("boom")
    store.load_state.side_effect = StoreUnavailable("boom")
    store.load_snapshot.side_effect = StoreUnavailable("boom")
    ledger = QueueLedger(store, gate)

    with pytest.raises(StoreUnavailableError):
        await ledger.join("Alice")
    with pytest.raises(StoreUnavailableError):
        await ledger.advance(operator)
    with pytest.raises(StoreUnavailableError):
        await ledger.snapshot()


@pytest.mark.asyncio
async def test_status_for_unknown_ticket_is_none(ledger):
    await ledger.join("Alice")
    assert await ledger.status_for(0) is None
    assert await ledger.status_for(2) is None

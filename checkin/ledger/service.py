from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from opentelemetry import trace

from checkin.security.operator import OperatorCapability, OperatorGate
from checkin.store.base import Store, StoreConflict, StoreDuplicate, StoreUnavailable

from .errors import AuthorizationError, ConflictError, DuplicateError, StoreUnavailableError
from .models import AdvanceResult, LedgerState, QueueSnapshot, Ticket, TicketPosition
from .rate_limit import SlidingWindowRateLimiter
from .state import TicketStateMachine, TicketStatus, derive_status
from .validation import normalize_email, validate_name

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NOTHING_TO_ADVANCE = "nothing to advance"
STALE_ADVANCE = "stale"


@asynccontextmanager
async def _store_boundary(action: str) -> AsyncIterator[None]:
    try:
        yield
    except StoreUnavailable as exc:
        raise StoreUnavailableError(f"Could not {action}. Please try again.") from exc


class QueueLedger:
    """Issue tickets and move the "now serving" pointer.

    All durability and fan-out is delegated to the ``Store``. Ticket numbers
    are assigned by the store under serialization; this class only retries
    when the store reports a collision.
    """

    def __init__(
        self,
        store: Store,
        gate: OperatorGate,
        *,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        max_join_retries: int = 5,
    ) -> None:
        self._store = store
        self._gate = gate
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._max_join_retries = max(1, max_join_retries)

    @property
    def mode(self) -> str:
        return self._store.mode

    async def join(self, name: str, email: str | None = None, *, identity: str = "anonymous") -> Ticket:
        clean_name = validate_name(name)
        clean_email = normalize_email(email)
        self._rate_limiter.hit(identity)

        with tracer.start_as_current_span("ledger.join"):
            for attempt in range(1, self._max_join_retries + 1):
                try:
                    async with _store_boundary("join the queue"):
                        ticket = await self._store.issue_ticket(name=clean_name, email=clean_email)
                except StoreDuplicate as exc:
                    raise DuplicateError("This email is already in the queue") from exc
                except StoreConflict:
                    logger.warning("Ticket number collision on attempt %d/%d", attempt, self._max_join_retries)
                    continue
                logger.info("Issued ticket #%03d to %s", ticket.ticket, ticket.name)
                return ticket

        raise ConflictError("Could not assign a ticket number. Please try again.")

    async def advance(self, capability: OperatorCapability | None) -> AdvanceResult:
        operator = self._require_operator(capability)
        with tracer.start_as_current_span("ledger.advance"):
            async with _store_boundary("advance the queue"):
                state = await self._store.load_state()
                if not state.has_next:
                    logger.info("Advance requested by %s with nothing to advance", operator.username)
                    return AdvanceResult(state=state, advanced=False, reason=NOTHING_TO_ADVANCE)

                advanced = await self._store.compare_and_advance(state.current_serving)
                if advanced is None:
                    fresh = await self._store.load_state()
                    logger.info(
                        "Advance by %s lost the race at #%d, now serving #%d",
                        operator.username,
                        state.current_serving,
                        fresh.current_serving,
                    )
                    reason = STALE_ADVANCE if fresh.current_serving != state.current_serving else NOTHING_TO_ADVANCE
                    return AdvanceResult(state=fresh, advanced=False, reason=reason)

        _assert_advance(state, advanced)
        logger.info("Operator %s advanced queue to #%d", operator.username, advanced.current_serving)
        return AdvanceResult(state=advanced, advanced=True)

    async def reset(self, capability: OperatorCapability | None) -> LedgerState:
        operator = self._require_operator(capability)
        with tracer.start_as_current_span("ledger.reset"):
            async with _store_boundary("reset the queue"):
                state = await self._store.reset_all()
        logger.warning("Operator %s reset the queue", operator.username)
        return state

    async def state(self) -> LedgerState:
        async with _store_boundary("load the queue state"):
            return await self._store.load_state()

    async def tickets(self) -> Sequence[Ticket]:
        async with _store_boundary("load the queue"):
            return await self._store.list_tickets()

    async def snapshot(self) -> QueueSnapshot:
        async with _store_boundary("load the queue"):
            state, tickets = await self._store.load_snapshot()
        return QueueSnapshot(state=state, tickets=list(tickets), mode=self._store.mode)

    async def position_of(self, ticket: int) -> TicketPosition | None:
        return (await self.state()).position_of(ticket)

    async def status_for(self, ticket: int) -> TicketStatus | None:
        position = await self.position_of(ticket)
        return position.status if position is not None else None

    def _require_operator(self, capability: OperatorCapability | None) -> OperatorCapability:
        try:
            return self._gate.require(capability)
        except AuthorizationError:
            logger.warning("Rejected operator action without a valid capability")
            raise


def _assert_advance(before: LedgerState, after: LedgerState) -> None:
    for number in (before.current_serving, after.current_serving):
        TicketStateMachine.assert_transition(
            derive_status(number, before.current_serving),
            derive_status(number, after.current_serving),
        )

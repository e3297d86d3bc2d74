import pytest
import pytest_asyncio

from checkin.ledger.rate_limit import SlidingWindowRateLimiter
from checkin.ledger.service import QueueLedger
from checkin.security.operator import OperatorCapability, OperatorGate, StaticAdminVerifier
from checkin.store.memory import InMemoryStore


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def gate():
    return OperatorGate(StaticAdminVerifier("admin", "s3cret"))


@pytest.fixture
def ledger(store, gate):
    # Generous limit so scenario tests are not throttled.
    limiter = SlidingWindowRateLimiter(max_attempts=1000, window_seconds=60)
    return QueueLedger(store, gate, rate_limiter=limiter)


@pytest_asyncio.fixture
async def operator(gate) -> OperatorCapability:
    return await gate.authenticate("admin", "s3cret")

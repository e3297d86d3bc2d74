from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterator, Mapping, Sequence

import asyncpg

from checkin.ledger.models import LedgerState, Ticket

from .base import STATE_ROW_ID, ChangeEvent, StoreConflict, StoreDuplicate, StoreUnavailable

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "checkin_changes"

_EMAIL_INDEX = "queue_entries_email_key"
_TICKET_CONSTRAINT = "queue_entries_ticket_key"


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (OSError, asyncio.TimeoutError, asyncpg.InterfaceError, asyncpg.PostgresError) as exc:
        logger.warning("Postgres %s failed: %s", action, exc)
        raise StoreUnavailable(f"{action} failed") from exc


class PostgresStore:
    """Store backed by PostgreSQL tables ``queue_entries`` and ``system_state``.

    Ticket numbers come from the persisted ``ticket_count`` counter. The
    counter is bumped with ``UPDATE ... RETURNING`` inside the same
    transaction as the insert, so the row lock on ``system_state``
    serializes concurrent issuers. The unique constraint on ``ticket``
    catches any drift between the counter and the rows.
    """

    mode = "remote"

    _CREATE_STATE_SQL = """
    CREATE TABLE IF NOT EXISTS system_state (
        id INTEGER PRIMARY KEY,
        current_serving INTEGER NOT NULL DEFAULT 1 CHECK (current_serving >= 1),
        ticket_count INTEGER NOT NULL DEFAULT 0 CHECK (ticket_count >= 0),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _SEED_STATE_SQL = """
    INSERT INTO system_state (id, current_serving, ticket_count)
    VALUES ($1, 1, 0)
    ON CONFLICT (id) DO NOTHING
    """

    _CREATE_ENTRIES_SQL = f"""
    CREATE TABLE IF NOT EXISTS queue_entries (
        id BIGSERIAL PRIMARY KEY,
        ticket INTEGER NOT NULL CHECK (ticket > 0),
        name TEXT NOT NULL,
        email TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT {_TICKET_CONSTRAINT} UNIQUE (ticket)
    )
    """

    _CREATE_EMAIL_INDEX_SQL = f"""
    CREATE UNIQUE INDEX IF NOT EXISTS {_EMAIL_INDEX}
    ON queue_entries (lower(email))
    WHERE email IS NOT NULL
    """

    _CREATE_NOTIFY_FUNCTION_SQL = f"""
    CREATE OR REPLACE FUNCTION checkin_notify_change() RETURNS trigger AS $$
    BEGIN
        PERFORM pg_notify('{NOTIFY_CHANNEL}', TG_TABLE_NAME || ':' || TG_OP);
        RETURN NULL;
    END;
    $$ LANGUAGE plpgsql
    """

    _CREATE_TRIGGERS_SQL = (
        """
        CREATE OR REPLACE TRIGGER queue_entries_notify
        AFTER INSERT OR UPDATE OR DELETE ON queue_entries
        FOR EACH STATEMENT EXECUTE FUNCTION checkin_notify_change()
        """,
        """
        CREATE OR REPLACE TRIGGER system_state_notify
        AFTER INSERT OR UPDATE OR DELETE ON system_state
        FOR EACH STATEMENT EXECUTE FUNCTION checkin_notify_change()
        """,
    )

    _SELECT_STATE_SQL = """
    SELECT current_serving, ticket_count, updated_at
    FROM system_state
    WHERE id = $1
    """

    _SELECT_ENTRIES_SQL = """
    SELECT ticket, name, email, created_at
    FROM queue_entries
    ORDER BY ticket ASC
    """

    _BUMP_COUNTER_SQL = """
    UPDATE system_state
    SET ticket_count = ticket_count + 1,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = $1
    RETURNING ticket_count
    """

    _INSERT_ENTRY_SQL = """
    INSERT INTO queue_entries (ticket, name, email)
    VALUES ($1, $2, $3)
    RETURNING ticket, name, email, created_at
    """

    _RESYNC_COUNTER_SQL = """
    UPDATE system_state
    SET ticket_count = GREATEST(ticket_count, (SELECT COALESCE(MAX(ticket), 0) FROM queue_entries))
    WHERE id = $1
    """

    _ADVANCE_SQL = """
    UPDATE system_state
    SET current_serving = current_serving + 1,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = $1
      AND current_serving = $2
      AND current_serving < ticket_count
    RETURNING current_serving, ticket_count, updated_at
    """

    _DELETE_ENTRIES_SQL = """
    DELETE FROM queue_entries
    """

    _RESET_STATE_SQL = """
    UPDATE system_state
    SET current_serving = 1,
        ticket_count = 0,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = $1
    RETURNING current_serving, ticket_count, updated_at
    """

    def __init__(
        self,
        *,
        dsn: str | None = None,
        pool: Any = None,
        min_size: int = 1,
        max_size: int = 5,
    ) -> None:
        if dsn is None and pool is None:
            raise ValueError("PostgresStore needs a dsn or a pool")
        self._dsn = dsn
        self._pool = pool
        self._min_size = min_size
        self._max_size = max_size

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            with _translate_errors("connect"):
                self._pool = await asyncpg.create_pool(
                    dsn=self._dsn, min_size=self._min_size, max_size=self._max_size
                )
        return self._pool

    async def ensure_schema(self) -> None:
        pool = await self._ensure_pool()
        with _translate_errors("ensure_schema"):
            async with pool.acquire() as connection:
                await connection.execute(self._CREATE_STATE_SQL)
                await connection.execute(self._SEED_STATE_SQL, STATE_ROW_ID)
                await connection.execute(self._CREATE_ENTRIES_SQL)
                await connection.execute(self._CREATE_EMAIL_INDEX_SQL)
                await connection.execute(self._CREATE_NOTIFY_FUNCTION_SQL)
                for statement in self._CREATE_TRIGGERS_SQL:
                    await connection.execute(statement)

    async def load_state(self) -> LedgerState:
        pool = await self._ensure_pool()
        with _translate_errors("load_state"):
            async with pool.acquire() as connection:
                row = await connection.fetchrow(self._SELECT_STATE_SQL, STATE_ROW_ID)
        if row is None:
            return LedgerState.initial()
        return self._row_to_state(row)

    async def list_tickets(self) -> Sequence[Ticket]:
        pool = await self._ensure_pool()
        with _translate_errors("list_tickets"):
            async with pool.acquire() as connection:
                rows = await connection.fetch(self._SELECT_ENTRIES_SQL)
        return [self._row_to_ticket(row) for row in rows]

    async def load_snapshot(self) -> tuple[LedgerState, Sequence[Ticket]]:
        pool = await self._ensure_pool()
        with _translate_errors("load_snapshot"):
            async with pool.acquire() as connection:
                async with connection.transaction(isolation="repeatable_read", readonly=True):
                    state_row = await connection.fetchrow(self._SELECT_STATE_SQL, STATE_ROW_ID)
                    rows = await connection.fetch(self._SELECT_ENTRIES_SQL)
        state = self._row_to_state(state_row) if state_row is not None else LedgerState.initial()
        return state, [self._row_to_ticket(row) for row in rows]

    async def issue_ticket(self, *, name: str, email: str | None) -> Ticket:
        pool = await self._ensure_pool()
        with _translate_errors("issue_ticket"):
            async with pool.acquire() as connection:
                try:
                    async with connection.transaction():
                        number = await connection.fetchval(self._BUMP_COUNTER_SQL, STATE_ROW_ID)
                        if number is None:
                            raise StoreUnavailable("system_state row is missing")
                        row = await connection.fetchrow(self._INSERT_ENTRY_SQL, number, name, email)
                except asyncpg.UniqueViolationError as exc:
                    if exc.constraint_name == _EMAIL_INDEX:
                        raise StoreDuplicate(f"{email} already joined") from exc
                    # The counter fell behind the rows; catch it up before the caller retries.
                    await connection.execute(self._RESYNC_COUNTER_SQL, STATE_ROW_ID)
                    raise StoreConflict(f"ticket number collision on {exc.constraint_name}") from exc
        if row is None:
            raise StoreUnavailable("insert returned no row")
        return self._row_to_ticket(row)

    async def compare_and_advance(self, expected: int) -> LedgerState | None:
        pool = await self._ensure_pool()
        with _translate_errors("compare_and_advance"):
            async with pool.acquire() as connection:
                row = await connection.fetchrow(self._ADVANCE_SQL, STATE_ROW_ID, expected)
        if row is None:
            return None
        return self._row_to_state(row)

    async def reset_all(self) -> LedgerState:
        pool = await self._ensure_pool()
        with _translate_errors("reset_all"):
            async with pool.acquire() as connection:
                async with connection.transaction():
                    # Lock the state row before deleting so an in-flight issuer
                    # commits its ticket first and the delete sees it.
                    row = await connection.fetchrow(self._RESET_STATE_SQL, STATE_ROW_ID)
                    await connection.execute(self._DELETE_ENTRIES_SQL)
        if row is None:
            return LedgerState.initial()
        return self._row_to_state(row)

    async def subscribe(self) -> AsyncIterator[ChangeEvent]:
        pool = await self._ensure_pool()
        # None marks a terminated connection.
        queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()

        def _on_notify(connection: Any, pid: int, channel: str, payload: str) -> None:
            table, _, operation = payload.partition(":")
            queue.put_nowait(ChangeEvent(table=table, operation=operation or "*"))

        def _on_terminate(connection: Any) -> None:
            queue.put_nowait(None)

        with _translate_errors("subscribe"):
            connection = await pool.acquire()
        try:
            connection.add_termination_listener(_on_terminate)
            with _translate_errors("subscribe"):
                await connection.add_listener(NOTIFY_CHANNEL, _on_notify)
            try:
                while True:
                    event = await queue.get()
                    if event is None:
                        logger.warning("Postgres listen connection closed")
                        raise StoreUnavailable("listen connection closed")
                    yield event
            finally:
                connection.remove_termination_listener(_on_terminate)
                if not connection.is_closed():
                    with _translate_errors("unsubscribe"):
                        await connection.remove_listener(NOTIFY_CHANNEL, _on_notify)
        finally:
            await pool.release(connection)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @staticmethod
    def _row_to_state(row: Mapping[str, Any]) -> LedgerState:
        return LedgerState(
            current_serving=int(row["current_serving"]),
            ticket_count=int(row["ticket_count"]),
            updated_at=_ensure_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        email = row["email"]
        return Ticket(
            ticket=int(row["ticket"]),
            name=str(row["name"]),
            email=str(email) if email is not None else None,
            created_at=_ensure_datetime(row["created_at"]),
        )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))

"""Consumers of the store's change feed.

Notifications are an unordered, at-least-once stream of "something changed"
signals. Every signal triggers a full reload of the authoritative snapshot;
payloads are never applied as deltas.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from checkin.store.base import Store, StoreUnavailable

from .errors import StoreUnavailableError
from .models import QueueSnapshot
from .service import QueueLedger

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[QueueSnapshot], Awaitable[None] | None]


class LedgerView:
    """Keep the latest queue snapshot in sync with the store."""

    def __init__(self, ledger: QueueLedger, *, resubscribe_delay: float = 2.0) -> None:
        self._ledger = ledger
        self._resubscribe_delay = resubscribe_delay
        self._snapshot: QueueSnapshot | None = None
        self._listeners: list[SnapshotListener] = []
        self._changed = asyncio.Event()

    @property
    def snapshot(self) -> QueueSnapshot | None:
        return self._snapshot

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def refresh(self) -> QueueSnapshot:
        snapshot = await self._ledger.snapshot()
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if result is not None:
                    await result
            except Exception:
                logger.exception("Snapshot listener failed")
        return snapshot

    async def run(self, store: Store) -> None:
        """Reload on every change signal until cancelled.

        Signals that arrive while a reload is in flight are coalesced into
        a single follow-up reload.
        """

        pump = asyncio.create_task(self._pump(store))
        try:
            await self._reload_quietly()
            while True:
                await self._changed.wait()
                self._changed.clear()
                await self._reload_quietly()
        finally:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    async def _pump(self, store: Store) -> None:
        while True:
            try:
                async for event in store.subscribe():
                    logger.debug("Change on %s (%s)", event.table, event.operation)
                    self._changed.set()
            except StoreUnavailable as exc:
                logger.warning("Change feed dropped, resubscribing: %s", exc)
            # Anything may have changed while the feed was down.
            self._changed.set()
            await asyncio.sleep(self._resubscribe_delay)

    async def _reload_quietly(self) -> None:
        try:
            await self.refresh()
        except StoreUnavailableError as exc:
            logger.warning("Queue reload failed: %s", exc)


class TurnNotifier:
    """Fire ``on_turn`` when the owner's ticket becomes the one being served.

    The callback runs only on the transition from not-equal to equal, never
    repeatedly while the ticket stays current.
    """

    def __init__(
        self,
        ticket: int,
        on_turn: Callable[[int], None],
        *,
        current_serving: int | None = None,
    ) -> None:
        self.ticket = ticket
        self._on_turn = on_turn
        self._was_current = current_serving == ticket

    def observe(self, current_serving: int) -> bool:
        is_current = current_serving == self.ticket
        fired = is_current and not self._was_current
        self._was_current = is_current
        if fired:
            self._on_turn(self.ticket)
        return fired

    def __call__(self, snapshot: QueueSnapshot) -> None:
        self.observe(snapshot.state.current_serving)

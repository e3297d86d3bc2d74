import asyncio

import pytest

from checkin.ledger.watcher import LedgerView, TurnNotifier
from checkin.store.base import ChangeEvent, StoreUnavailable


async def _wait_for(predicate, timeout=1.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


def test_turn_notifier_fires_only_on_transition():
    fired = []
    notifier = TurnNotifier(3, fired.append, current_serving=1)

    assert not notifier.observe(2)
    assert notifier.observe(3)
    assert not notifier.observe(3)
    assert not notifier.observe(4)
    assert fired == [3]


def test_turn_notifier_fires_again_after_moving_away():
    fired = []
    notifier = TurnNotifier(1, fired.append, current_serving=1)

    # Already current when created: no alert.
    assert not notifier.observe(1)
    assert not notifier.observe(2)
    assert notifier.observe(1)
    assert fired == [1]


@pytest.mark.asyncio
async def test_view_reloads_snapshot_on_change(ledger, store, operator):
    view = LedgerView(ledger)
    task = asyncio.create_task(view.run(store))
    try:
        await _wait_for(lambda: view.snapshot is not None)
        await ledger.join("Alice")
        await ledger.join("Bob")
        await ledger.advance(operator)
        await _wait_for(lambda: view.snapshot.state.current_serving == 2)

        snapshot = view.snapshot
        assert [ticket.ticket for ticket in snapshot.tickets] == [1, 2]
        assert snapshot.now_serving.name == "Bob"
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_view_ignores_payloads_and_reloads(ledger):
    class ScriptedStore:
        mode = "memory"

        def __init__(self):
            self.events = asyncio.Queue()

        async def subscribe(self):
            while True:
                yield await self.events.get()

    scripted = ScriptedStore()
    seen = []
    view = LedgerView(ledger)
    view.add_listener(seen.append)
    task = asyncio.create_task(view.run(scripted))
    try:
        await _wait_for(lambda: len(seen) == 1)
        await ledger.join("Alice")
        # A bogus payload still only triggers an authoritative reload.
        scripted.events.put_nowait(ChangeEvent("system_state", "UPDATE"))
        await _wait_for(lambda: len(seen) >= 2)
        assert seen[-1].state.ticket_count == 1
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_turn_notifier_as_view_listener(ledger, operator):
    alerts = []
    view = LedgerView(ledger)
    await ledger.join("Alice")
    bob = await ledger.join("Bob")
    view.add_listener(TurnNotifier(bob.ticket, alerts.append, current_serving=1))

    await view.refresh()
    await ledger.advance(operator)
    await view.refresh()
    await view.refresh()

    assert alerts == [2]


@pytest.mark.asyncio
async def test_view_resubscribes_after_feed_drops(ledger):
    class DroppingStore:
        mode = "remote"

        def __init__(self):
            self.subscriptions = 0
            self.events = asyncio.Queue()

        async def subscribe(self):
            self.subscriptions += 1
            if self.subscriptions == 1:
                raise StoreUnavailable("listen connection closed")
            while True:
                yield await self.events.get()

    dropping = DroppingStore()
    seen = []
    view = LedgerView(ledger, resubscribe_delay=0)
    view.add_listener(seen.append)
    task = asyncio.create_task(view.run(dropping))
    try:
        await _wait_for(lambda: dropping.subscriptions == 2)
        await ledger.join("Alice")
        dropping.events.put_nowait(ChangeEvent("queue_entries", "INSERT"))
        await _wait_for(lambda: seen and seen[-1].state.ticket_count == 1)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from checkin.ledger.service import QueueLedger
from checkin.ledger.watcher import LedgerView


async def get_ledger(request: Request) -> QueueLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(status_code=503, detail="Queue ledger is not configured")
    return ledger


async def get_ledger_view(request: Request) -> LedgerView:
    view = getattr(request.app.state, "ledger_view", None)
    if view is None:
        raise HTTPException(status_code=503, detail="Queue view is not configured")
    return view


LedgerDep = Annotated[QueueLedger, Depends(get_ledger)]
LedgerViewDep = Annotated[LedgerView, Depends(get_ledger_view)]

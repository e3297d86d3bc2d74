from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from checkin.api.routes.schemas import (
    AdvanceResponse,
    JoinRequest,
    JoinResponse,
    QueueResponse,
    ShareResponse,
    StateResponse,
    TicketStatusResponse,
    queue_response,
    state_response,
)
from checkin.core.config import get_settings
from checkin.dependencies.auth import Operator
from checkin.dependencies.ledger import LedgerDep
from checkin.ledger.errors import (
    AuthorizationError,
    ConflictError,
    DuplicateError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
)
from checkin.share import qr_image_url, share_target

router = APIRouter(prefix="/queue", tags=["queue"])


def _client_identity(request: Request) -> str:
    if request.client is not None and request.client.host:
        return request.client.host
    return "anonymous"


@router.get("", response_model=QueueResponse)
async def get_queue(ledger: LedgerDep) -> QueueResponse:
    try:
        snapshot = await ledger.snapshot()
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return queue_response(snapshot)


@router.post("/join", response_model=JoinResponse, status_code=status.HTTP_201_CREATED)
async def join_queue(payload: JoinRequest, request: Request, response: Response, ledger: LedgerDep) -> JoinResponse:
    try:
        ticket = await ledger.join(payload.name, payload.email, identity=_client_identity(request))
        position = await ledger.position_of(ticket.ticket)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "message": str(exc)}) from exc
    except DuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except RateLimitedError as exc:
        raise HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(int(exc.retry_after))},
        ) from exc
    except (ConflictError, StoreUnavailableError) as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if position is None:
        # A reset landed between issuing and reading the state.
        raise HTTPException(status_code=503, detail="The queue was reset. Please join again.")
    response.headers["Location"] = f"{router.prefix}/tickets/{ticket.ticket}"
    return JoinResponse(
        ticket=ticket.ticket,
        name=ticket.name,
        status=position.status,
        created_at=ticket.created_at,
        people_ahead=position.people_ahead,
    )


@router.get("/tickets/{ticket}", response_model=TicketStatusResponse)
async def get_ticket_status(ticket: int, ledger: LedgerDep) -> TicketStatusResponse:
    try:
        position = await ledger.position_of(ticket)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if position is None:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket} not found")
    return TicketStatusResponse(
        ticket=position.ticket,
        status=position.status,
        current_serving=position.current_serving,
        people_ahead=position.people_ahead,
    )


@router.post("/advance", response_model=AdvanceResponse)
async def advance_queue(ledger: LedgerDep, operator: Operator) -> AdvanceResponse:
    try:
        result = await ledger.advance(operator)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AdvanceResponse(
        **state_response(result.state).model_dump(),
        advanced=result.advanced,
        reason=result.reason,
    )


@router.post("/reset", response_model=StateResponse)
async def reset_queue(
    ledger: LedgerDep,
    operator: Operator,
    confirm: bool = Query(default=False, description="Must be true; reset discards every ticket"),
) -> StateResponse:
    if not confirm:
        raise HTTPException(status_code=400, detail="Reset must be confirmed with confirm=true")
    try:
        state = await ledger.reset(operator)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return state_response(state)


@router.get("/share", response_model=ShareResponse)
async def share_link(request: Request) -> ShareResponse:
    settings = get_settings()
    target = share_target(str(request.base_url), settings.public_url)
    return ShareResponse(target=target, qr_image_url=qr_image_url(target, size=settings.qr_image_size))

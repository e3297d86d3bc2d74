from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from checkin.ledger.models import LedgerState, QueueSnapshot, Ticket
from checkin.ledger.state import TicketStatus


class JoinRequest(BaseModel):
    name: str = Field(..., max_length=200)
    email: str | None = Field(default=None, max_length=320)


class TicketResponse(BaseModel):
    ticket: int
    name: str
    status: TicketStatus
    created_at: datetime


class JoinResponse(TicketResponse):
    people_ahead: int


class TicketStatusResponse(BaseModel):
    ticket: int
    status: TicketStatus
    current_serving: int
    people_ahead: int


class StateResponse(BaseModel):
    current_serving: int
    ticket_count: int
    updated_at: datetime


class AdvanceResponse(StateResponse):
    advanced: bool
    reason: str | None = None


class QueueResponse(BaseModel):
    current_serving: int
    ticket_count: int
    waiting: int
    now_serving: int | None
    mode: str
    tickets: list[TicketResponse]


class ShareResponse(BaseModel):
    target: str
    qr_image_url: str


class SessionRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1, max_length=256)


class SessionResponse(BaseModel):
    token: str
    username: str


def ticket_response(ticket: Ticket, current_serving: int) -> TicketResponse:
    # Emails are never echoed back to displays.
    return TicketResponse(
        ticket=ticket.ticket,
        name=ticket.name,
        status=ticket.status_at(current_serving),
        created_at=ticket.created_at,
    )


def state_response(state: LedgerState) -> StateResponse:
    return StateResponse(
        current_serving=state.current_serving,
        ticket_count=state.ticket_count,
        updated_at=state.updated_at,
    )


def queue_response(snapshot: QueueSnapshot) -> QueueResponse:
    current = snapshot.now_serving
    return QueueResponse(
        current_serving=snapshot.state.current_serving,
        ticket_count=snapshot.state.ticket_count,
        waiting=snapshot.waiting_count,
        now_serving=current.ticket if current is not None else None,
        mode=snapshot.mode,
        tickets=[ticket_response(ticket, snapshot.state.current_serving) for ticket in snapshot.tickets],
    )

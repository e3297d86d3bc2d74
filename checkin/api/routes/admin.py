from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from checkin.api.routes.schemas import SessionRequest, SessionResponse
from checkin.dependencies.auth import Operator, OperatorGateDep
from checkin.ledger.errors import AuthorizationError, VerifierUnavailableError

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/session", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(payload: SessionRequest, gate: OperatorGateDep) -> SessionResponse:
    try:
        capability = await gate.authenticate(payload.username, payload.password)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except VerifierUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return SessionResponse(token=capability.token, username=capability.username)


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(operator: Operator, gate: OperatorGateDep) -> None:
    gate.revoke(operator.token)

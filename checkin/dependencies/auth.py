from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from checkin.security.operator import OperatorCapability, OperatorGate

bearer_scheme = HTTPBearer(auto_error=False)


async def get_operator_gate(request: Request) -> OperatorGate:
    gate = getattr(request.app.state, "operator_gate", None)
    if gate is None:
        raise HTTPException(status_code=503, detail="Operator authentication is not configured")
    return gate


OperatorGateDep = Annotated[OperatorGate, Depends(get_operator_gate)]


async def get_optional_operator(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    gate: OperatorGateDep,
) -> OperatorCapability | None:
    """Resolve the bearer token into an operator capability, if any.

    Missing or unknown tokens yield ``None``; the ledger decides whether
    that is acceptable for the requested action.
    """

    if credentials is None:
        return None
    return gate.resolve(credentials.credentials)


async def require_operator(
    capability: Annotated[OperatorCapability | None, Depends(get_optional_operator)],
) -> OperatorCapability:
    if capability is None:
        raise HTTPException(
            status_code=401,
            detail="Admin authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return capability


OptionalOperator = Annotated[OperatorCapability | None, Depends(get_optional_operator)]
Operator = Annotated[OperatorCapability, Depends(require_operator)]

from fastapi import APIRouter, Request

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping(request: Request) -> dict[str, str]:
    ledger = getattr(request.app.state, "ledger", None)
    mode = ledger.mode if ledger is not None else "unconfigured"
    return {"status": "ok", "mode": mode}

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from checkin.api.routes import admin, ping, queue, ws
from checkin.core.config import Settings, get_settings
from checkin.core.logging import configure_logging, init_tracer, shutdown_tracer
from checkin.ledger.rate_limit import SlidingWindowRateLimiter
from checkin.ledger.service import QueueLedger
from checkin.ledger.watcher import LedgerView
from checkin.security.operator import AdminVerifier, HttpAdminVerifier, OperatorGate, StaticAdminVerifier
from checkin.store.factory import create_store


def build_verifier(settings: Settings) -> AdminVerifier | None:
    """Pick the admin credential check; ``None`` disables operator login."""

    if settings.admin_verify_url:
        return HttpAdminVerifier(settings.admin_verify_url)
    if settings.admin_password:
        return StaticAdminVerifier(settings.admin_username, settings.admin_password)
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    store = await create_store(settings)
    verifier = build_verifier(settings)
    if verifier is None:
        logger.warning("No admin credentials configured, operator actions are disabled")
        # Empty passwords are rejected before verification, so this gate never issues a capability.
        gate = OperatorGate(StaticAdminVerifier(settings.admin_username, ""))
        app.state.operator_gate = None
    else:
        gate = OperatorGate(verifier, ttl_seconds=settings.operator_token_ttl_seconds)
        app.state.operator_gate = gate

    ledger = QueueLedger(
        store,
        gate,
        rate_limiter=SlidingWindowRateLimiter(
            max_attempts=settings.join_rate_limit_attempts,
            window_seconds=settings.join_rate_limit_window_seconds,
        ),
        max_join_retries=settings.join_max_retries,
    )
    view = LedgerView(ledger)
    app.state.store = store
    app.state.ledger = ledger
    app.state.ledger_view = view
    view_task = asyncio.create_task(view.run(store))
    try:
        yield
    finally:
        view_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await view_task
        await store.close()
        shutdown_tracer(tracer_provider)
        logging.getLogger(__name__).info("Queue service stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(queue.router)
    app.include_router(ws.router)
    app.include_router(admin.router)
    return app


app = create_app()

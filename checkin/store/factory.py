from __future__ import annotations

import logging

from checkin.core.config import Settings

from .base import Store, StoreUnavailable
from .memory import InMemoryStore
from .postgres import PostgresStore

logger = logging.getLogger(__name__)


async def create_store(settings: Settings) -> Store:
    """Build the configured store once at startup.

    An unreachable Postgres does not stop the service: it falls back to a
    process-local store labelled ``degraded``.
    """

    backend = settings.store_backend.lower()
    if backend == "memory":
        store: Store = InMemoryStore()
    elif backend == "postgres":
        store = PostgresStore(
            dsn=settings.postgres_dsn,
            min_size=settings.postgres_pool_min,
            max_size=settings.postgres_pool_max,
        )
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend!r}")

    try:
        await store.ensure_schema()
    except StoreUnavailable:
        logger.warning("Store %s unavailable at startup, running in degraded local-only mode", backend)
        await store.close()
        store = InMemoryStore(mode="degraded")
    logger.info("Using %s store", store.mode)
    return store

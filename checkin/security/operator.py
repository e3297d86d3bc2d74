"""Operator capabilities for privileged queue actions.

Credential checking is delegated to an ``AdminVerifier``. The gate only
hands out opaque tokens for successful verifications and later confirms that
a presented capability is one it issued.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol

import httpx

from checkin.ledger.errors import AuthorizationError, VerifierUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VerificationResult:
    ok: bool
    operator_id: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class OperatorCapability:
    """Proof that an operator authenticated through the gate."""

    operator_id: str
    username: str
    token: str
    issued_at: float


class AdminVerifier(Protocol):
    async def verify(self, username: str, password: str) -> VerificationResult:
        ...


class HttpAdminVerifier:
    """Call the external verify-admin function.

    The function accepts ``{"username", "password"}`` and answers
    ``{"ok": true, "id": ...}`` on success or a 4xx with
    ``{"ok": false, "error": ...}``.
    """

    def __init__(self, url: str, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def verify(self, username: str, password: str) -> VerificationResult:
        payload = {"username": username, "password": password}
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Admin verification request failed: %s", exc)
            raise VerifierUnavailableError("Admin verification is unavailable, try again") from exc

        if response.status_code >= 500:
            raise VerifierUnavailableError("Admin verification is unavailable, try again")

        try:
            data = response.json()
        except ValueError:
            return VerificationResult(ok=False, error="malformed")

        if response.status_code == 200 and isinstance(data, dict) and data.get("ok") is True:
            return VerificationResult(ok=True, operator_id=str(data.get("id", username)))
        error = data.get("error") if isinstance(data, dict) else None
        return VerificationResult(ok=False, error=str(error or "invalid"))


class StaticAdminVerifier:
    """Compare against one configured credential pair (demo mode)."""

    def __init__(self, username: str, password: str) -> None:
        self._username = username
        self._password = password

    async def verify(self, username: str, password: str) -> VerificationResult:
        user_ok = hmac.compare_digest(username.encode("utf-8"), self._username.encode("utf-8"))
        password_ok = hmac.compare_digest(password.encode("utf-8"), self._password.encode("utf-8"))
        if user_ok and password_ok:
            return VerificationResult(ok=True, operator_id=username)
        return VerificationResult(ok=False, error="invalid")


class OperatorGate:
    """Issue and check operator capabilities."""

    def __init__(
        self,
        verifier: AdminVerifier,
        *,
        ttl_seconds: float = 8 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._verifier = verifier
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._issued: dict[str, OperatorCapability] = {}
        self._lock = Lock()

    async def authenticate(self, username: str, password: str) -> OperatorCapability:
        if not username or not password:
            raise AuthorizationError("Username and password are required")
        result = await self._verifier.verify(username, password)
        if not result.ok:
            logger.info("Operator authentication rejected for %s (%s)", username, result.error)
            raise AuthorizationError("Invalid operator credentials")

        capability = OperatorCapability(
            operator_id=result.operator_id or username,
            username=username,
            token=secrets.token_urlsafe(32),
            issued_at=self._clock(),
        )
        with self._lock:
            self._purge_expired()
            self._issued[capability.token] = capability
        logger.info("Operator %s authenticated", username)
        return capability

    def resolve(self, token: str | None) -> OperatorCapability | None:
        if not token:
            return None
        with self._lock:
            capability = self._issued.get(token)
            if capability is None:
                return None
            if self._expired(capability):
                del self._issued[token]
                return None
            return capability

    def require(self, capability: OperatorCapability | None) -> OperatorCapability:
        if capability is None:
            raise AuthorizationError("Admin authentication required")
        current = self.resolve(capability.token)
        if current is None or current != capability:
            raise AuthorizationError("Admin authentication required")
        return current

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._issued.pop(token, None) is not None

    def _expired(self, capability: OperatorCapability) -> bool:
        return self._clock() - capability.issued_at >= self._ttl_seconds

    def _purge_expired(self) -> None:
        for token in [token for token, capability in self._issued.items() if self._expired(capability)]:
            del self._issued[token]

    @property
    def active_sessions(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._issued)

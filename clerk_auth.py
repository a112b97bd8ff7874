"""Clerk session handshake and bearer-token renewal.

Suno authenticates through Clerk: the long-lived ``__client`` cookie is
exchanged once for a session id, and the session id is exchanged for a
short-lived JWT whenever a fresh one is needed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from suno_errors import HandshakeError, TokenRenewalError

logger = logging.getLogger("suno-relay.auth")


def _clerk_params(js_version: str) -> dict[str, str]:
    return {"_clerk_js_version": js_version}


class SessionHandshake:
    """Resolves the Clerk session id for the cookie held by ``http``."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        clerk_base: str,
        js_version: str,
        timeout: float = 30.0,
    ) -> None:
        self._http = http
        self._clerk_base = clerk_base.rstrip("/")
        self._js_version = js_version
        self._timeout = timeout

    async def acquire_session(self) -> str:
        """One round trip to ``/v1/client``; raises HandshakeError on any failure."""
        try:
            resp = await self._http.get(
                f"{self._clerk_base}/v1/client",
                params=_clerk_params(self._js_version),
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise HandshakeError(
                f"Clerk rejected the cookie with status {e.response.status_code}; "
                "you may need to update SUNO_COOKIE",
                operation="init",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise HandshakeError(f"session discovery failed: {e}", operation="init") from e

        client_obj: Any = data.get("response") if isinstance(data, dict) else None
        session_id = ""
        if isinstance(client_obj, dict):
            session_id = client_obj.get("last_active_session_id") or ""
            if not session_id:
                sessions = client_obj.get("sessions") or []
                if sessions and isinstance(sessions[0], dict):
                    session_id = sessions[0].get("id", "")

        if not session_id:
            raise HandshakeError(
                "Failed to get session id, you may need to update the SUNO_COOKIE",
                operation="init",
            )

        logger.info("Resolved Clerk session: %s", session_id[:20] + "...")
        return session_id


class TokenRenewer:
    """Holds the bearer token for one client and renews it under a lock.

    Callers that queue up on the lock while another renewal completes get
    that renewal's outcome (its token or its failure) instead of making
    their own round trip. A failed renewal leaves the previous token installed.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        clerk_base: str,
        js_version: str,
        timeout: float = 30.0,
        max_age: float | None = None,
    ) -> None:
        self._http = http
        self._clerk_base = clerk_base.rstrip("/")
        self._js_version = js_version
        self._timeout = timeout
        self._max_age = max_age
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._renewed_at: float | None = None
        self._generation = 0
        self._attempts = 0
        self._last_error: TokenRenewalError | None = None
        self.session_id: str | None = None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def renewal_count(self) -> int:
        return self._generation

    @property
    def token_age(self) -> float | None:
        if self._renewed_at is None:
            return None
        return time.monotonic() - self._renewed_at

    def _is_fresh(self) -> bool:
        if not self._token:
            return False
        if self._max_age is None:
            return True
        age = self.token_age
        return age is not None and age < self._max_age

    async def ensure_fresh(self) -> str:
        """Return the held token, renewing first if there is none or it aged out."""
        if self._is_fresh():
            return self._token  # type: ignore[return-value]
        if not self.session_id:
            raise TokenRenewalError(
                "Session ID is not set. Cannot renew token.", operation="ensure_fresh"
            )
        return await self.renew(self.session_id)

    async def renew(self, session_id: str) -> str:
        seen = self._attempts
        async with self._lock:
            if self._attempts != seen:
                # another caller renewed while we waited for the lock; share its outcome
                if self._last_error is not None:
                    raise TokenRenewalError(
                        self._last_error.message, operation=self._last_error.operation
                    ) from self._last_error
                if self._token:
                    return self._token

            self._attempts += 1
            try:
                token = await self._exchange(session_id)
            except TokenRenewalError as e:
                self._last_error = e
                raise
            self._last_error = None
            self._token = token
            self._renewed_at = time.monotonic()
            self._generation += 1
            logger.info("Access token renewed (#%d)", self._generation)
            return token

    async def _exchange(self, session_id: str) -> str:
        try:
            resp = await self._http.post(
                f"{self._clerk_base}/v1/client/sessions/{session_id}/tokens",
                params=_clerk_params(self._js_version),
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Token renewal rejected: %s", e.response.status_code)
            raise TokenRenewalError(
                f"Clerk returned status {e.response.status_code}", operation="renew"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Token renewal failed: %s", e)
            raise TokenRenewalError(str(e) or type(e).__name__, operation="renew") from e

        token = data.get("jwt") if isinstance(data, dict) else None
        if not token or not isinstance(token, str):
            raise TokenRenewalError("No jwt found in Clerk token response", operation="renew")
        return token

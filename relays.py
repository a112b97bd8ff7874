"""Relay endpoint selection.

A relay is an interchangeable forwarder in front of the studio API. Each
call picks one at random, or talks to the origin directly when none are
configured.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from urllib.parse import urlsplit


@dataclass(frozen=True)
class RelayEndpoint:
    id: str
    server: str


@dataclass(frozen=True)
class Route:
    """Where a single call goes. ``relay is None`` means direct to origin."""

    base_url: str
    relay: RelayEndpoint | None = None

    @property
    def via_relay(self) -> bool:
        return self.relay is not None


class RelaySelector:
    """Uniform random choice over a fixed list of relays."""

    def __init__(
        self,
        relays: list[RelayEndpoint] | tuple[RelayEndpoint, ...],
        origin: str,
        rng: random.Random | None = None,
    ) -> None:
        self._relays = tuple(relays)
        self._origin = origin.rstrip("/")
        self._rng = rng or random.Random()

    @property
    def relays(self) -> tuple[RelayEndpoint, ...]:
        return self._relays

    def select(self) -> Route:
        if not self._relays:
            return Route(base_url=self._origin)
        relay = self._rng.choice(self._relays)
        return Route(base_url=relay.server.rstrip("/"), relay=relay)


def relay_headers(route: Route, trace_id: str, relay_api_key: str, origin: str) -> dict[str, str]:
    """Headers a relay needs to forward the call; empty for direct calls."""
    if not route.via_relay:
        return {}
    return {
        "X-Proxy-Api-Key": relay_api_key,
        "X-Target-Host": urlsplit(origin).netloc or origin,
        "x-trace-id": trace_id,
        "x-start-at": str(int(time.time() * 1000)),
    }

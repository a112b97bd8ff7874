"""Environment-driven configuration for the Suno relay client.

Credentials (``Service`` records) and relay endpoints come from the
environment; ``pick_service`` chooses one credential per client.
"""

from __future__ import annotations

import json
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Any

from relays import RelayEndpoint

logger = logging.getLogger("suno-relay.config")

DEFAULT_MODEL = "suno-3.5"
SUNO_API_BASE = "https://studio-api.suno.ai"
CLERK_BASE = "https://clerk.suno.com"
CLERK_JS_VERSION = "4.72.4"
MAX_TIMEOUT = 600.0  # seconds; generation can be slow
MAX_CONCURRENT_GENERATIONS = 10
TOKEN_MAX_AGE = 40.0  # Clerk JWTs live ~60s


@dataclass(frozen=True)
class Service:
    """One Suno account credential as configured by the operator."""

    api_key: str
    service_model: str = DEFAULT_MODEL
    api_base: str = ""  # empty: use ClientSettings.api_base
    weight: int = 1


@dataclass(frozen=True)
class ClientSettings:
    """Runtime knobs for a ``SunoClient``."""

    api_base: str = SUNO_API_BASE
    clerk_base: str = CLERK_BASE
    clerk_js_version: str = CLERK_JS_VERSION
    model: str = "chirp-v3-5"
    request_timeout: float = MAX_TIMEOUT
    auth_timeout: float = 30.0
    max_concurrent_generations: int = MAX_CONCURRENT_GENERATIONS
    token_max_age: float | None = TOKEN_MAX_AGE
    relay_api_key: str = field(default="", repr=False)

    @classmethod
    def from_env(cls) -> ClientSettings:
        token_max_age = os.environ.get("SUNO_TOKEN_MAX_AGE", str(TOKEN_MAX_AGE)).strip()
        return cls(
            api_base=os.environ.get("SUNO_API_BASE", SUNO_API_BASE).rstrip("/"),
            clerk_base=os.environ.get("SUNO_CLERK_BASE", CLERK_BASE).rstrip("/"),
            clerk_js_version=os.environ.get("SUNO_CLERK_JS_VERSION", CLERK_JS_VERSION),
            model=os.environ.get("SUNO_MODEL", "chirp-v3-5"),
            request_timeout=float(os.environ.get("SUNO_REQUEST_TIMEOUT", MAX_TIMEOUT)),
            auth_timeout=float(os.environ.get("SUNO_AUTH_TIMEOUT", "30")),
            max_concurrent_generations=int(
                os.environ.get("SUNO_MAX_CONCURRENT_GENERATIONS", MAX_CONCURRENT_GENERATIONS)
            ),
            # "none" or "0" disables ageing: the token is renewed only on demand
            token_max_age=(
                None if token_max_age.lower() in ("", "none", "0") else float(token_max_age)
            ),
            relay_api_key=os.environ.get("SUNO_RELAY_API_KEY", ""),
        )


def _load_json_list(var: str) -> list[dict[str, Any]]:
    raw = os.environ.get(var, "").strip()
    if not raw:
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError(f"{var} must be a JSON list, got {type(data).__name__}")
    return data


def load_services() -> list[Service]:
    """Read credential records from SUNO_SERVICES, falling back to SUNO_COOKIE."""
    services = [
        Service(
            api_key=item["api_key"],
            service_model=item.get("service_model", DEFAULT_MODEL),
            api_base=item.get("api_base", ""),
            weight=int(item.get("weight", 1)),
        )
        for item in _load_json_list("SUNO_SERVICES")
    ]
    if not services:
        cookie = os.environ.get("SUNO_COOKIE", "").strip()
        if cookie:
            services.append(Service(api_key=cookie))
    return services


def load_relays() -> list[RelayEndpoint]:
    """Read relay endpoints from SUNO_RELAYS."""
    return [
        RelayEndpoint(id=str(item["id"]), server=item["server"].rstrip("/"))
        for item in _load_json_list("SUNO_RELAYS")
    ]


def pick_service(
    services: list[Service],
    model: str = DEFAULT_MODEL,
    api_key: str | None = None,
    rng: random.Random | None = None,
) -> Service:
    """Pick one credential for ``model``, weighted by ``Service.weight``.

    Passing ``api_key`` locks the choice to the service holding that cookie.
    """
    candidates = [s for s in services if s.service_model == model]
    if api_key:
        for service in candidates:
            if service.api_key == api_key:
                return service
        raise ValueError(f"No {model} service configured for the requested api_key")

    candidates = [s for s in candidates if s.weight > 0]
    if not candidates:
        raise ValueError(
            f"No {model} service configured. Set SUNO_SERVICES or SUNO_COOKIE."
        )
    chooser = rng or random
    service = chooser.choices(candidates, weights=[s.weight for s in candidates])[0]
    logger.debug("Picked service with weight %d out of %d candidates", service.weight, len(candidates))
    return service

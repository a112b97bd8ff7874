from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import httpx
import pytest

from suno_config import ClientSettings, Service

Handler = Callable[[httpx.Request], Awaitable[httpx.Response] | httpx.Response]


class FakeSuno:
    """In-memory Clerk + studio API behind an httpx.MockTransport.

    Tests override ``routes`` entries to change behaviour per endpoint.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.renewals = 0
        self.generate_gate: asyncio.Event | None = None
        self.generating = 0
        self.peak_generating = 0
        self.routes: dict[tuple[str, str], Handler] = {
            ("GET", "/v1/client"): self._client,
            ("POST", "/v1/client/sessions/sess_1/tokens"): self._tokens,
            ("POST", "/api/generate/v2/"): self._generate,
            ("POST", "/api/generate/lyrics/"): lambda r: httpx.Response(200, json={"id": "lyr_1"}),
            ("GET", "/api/generate/lyrics/lyr_1"): lambda r: httpx.Response(
                200, json={"status": "complete", "text": "verse one\n\n\nchorus\n"}
            ),
            ("GET", "/api/feed/"): self._feed,
            ("GET", "/api/billing/info/"): lambda r: httpx.Response(
                200, json={"total_credits_left": 420}
            ),
            ("GET", "/audio/a1.mp3"): lambda r: httpx.Response(200, content=b"ID3-a1"),
            ("GET", "/audio/a2.mp3"): lambda r: httpx.Response(200, content=b"ID3-a2"),
        }
        self.feed_status = "complete"

    def _client(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response": {"last_active_session_id": "sess_1"}})

    def _tokens(self, request: httpx.Request) -> httpx.Response:
        self.renewals += 1
        return httpx.Response(200, json={"jwt": f"jwt-{self.renewals}"})

    async def _generate(self, request: httpx.Request) -> httpx.Response:
        self.generating += 1
        self.peak_generating = max(self.peak_generating, self.generating)
        try:
            if self.generate_gate is not None:
                await self.generate_gate.wait()
            n = len([r for r in self.requests if r.url.path == "/api/generate/v2/"])
            return httpx.Response(200, json={"clips": [{"id": f"clip-{n}-a"}, {"id": f"clip-{n}-b"}]})
        finally:
            self.generating -= 1

    def _feed(self, request: httpx.Request) -> httpx.Response:
        ids = request.url.params.get("ids", "a1,a2").split(",")
        return httpx.Response(
            200,
            json=[
                {
                    "id": song_id,
                    "status": self.feed_status,
                    "title": f"Song {song_id}",
                    "audio_url": f"https://cdn.test/audio/{song_id}.mp3",
                    "created_at": "2024-05-01T00:00:00Z",
                    "metadata": {
                        "prompt": "line 1\n\nline 2",
                        "tags": "pop",
                        "duration_formatted": "2:01",
                    },
                }
                for song_id in ids
            ],
        )

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, text="not found")
        response = handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def fake_suno() -> FakeSuno:
    return FakeSuno()


@pytest.fixture
def service() -> Service:
    return Service(api_key="__client=cookie")


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(
        api_base="https://studio.test",
        clerk_base="https://clerk.test",
        request_timeout=5.0,
        max_concurrent_generations=2,
        token_max_age=None,
        relay_api_key="relay-key",
    )

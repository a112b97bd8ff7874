"""Async Suno studio client.

Wraps the Clerk token lifecycle, the generation admission queue and relay
routing behind one facade. Every public call makes sure a usable token is
held, picks a route, and maps failures onto ``suno_errors``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from cancellation import CancellationRegistry
from clerk_auth import SessionHandshake, TokenRenewer
from relays import RelayEndpoint, RelaySelector, Route, relay_headers
from song_queue import AdmissionQueue
from suno_config import DEFAULT_MODEL, ClientSettings, Service, pick_service
from suno_errors import (
    QueueTaskError,
    RemoteRejectionError,
    RequestTimeoutError,
    TokenRenewalError,
    TransportError,
)

logger = logging.getLogger("suno-relay.client")

PROVIDER = "Suno"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Safari/537.36"
)
SETTLED_STATUSES = ("streaming", "complete")


@dataclass
class SunoReqReturn:
    api_key: str
    song_ids: list[str]


@dataclass
class LyricsResult:
    lyric_id: str
    status: str
    lyrics: str


@dataclass
class SunoAudioInfo:
    """One clip as reported by the feed endpoint."""

    id: str
    status: str
    created_at: str = ""
    title: str | None = None
    image_url: str | None = None
    lyric: str = ""
    audio_url: str | None = None
    video_url: str | None = None
    model_name: str | None = None
    gpt_description_prompt: str | None = None
    prompt: str | None = None
    type: str | None = None
    tags: str | None = None
    duration: str | None = None
    content: bytes = field(default=b"", repr=False)
    provider: str = PROVIDER
    model: str = DEFAULT_MODEL
    api_key: str | None = field(default=None, repr=False)
    proxy: str | None = None
    remaining_credits: int | None = None

    @classmethod
    def from_feed(cls, audio: dict[str, Any], api_key: str, proxy: str) -> SunoAudioInfo:
        metadata = audio.get("metadata") or {}
        prompt = metadata.get("prompt")
        return cls(
            id=audio["id"],
            status=audio.get("status", ""),
            created_at=audio.get("created_at", ""),
            title=audio.get("title"),
            image_url=audio.get("image_url"),
            lyric=parse_lyrics(prompt) if prompt else "",
            audio_url=audio.get("audio_url"),
            video_url=audio.get("video_url"),
            model_name=audio.get("model_name"),
            gpt_description_prompt=metadata.get("gpt_description_prompt"),
            prompt=prompt,
            type=metadata.get("type"),
            tags=metadata.get("tags"),
            duration=metadata.get("duration_formatted"),
            api_key=api_key,
            proxy=proxy,
        )


def parse_lyrics(text: str | None) -> str:
    """Drop blank lines from lyrics text."""
    if not text:
        return ""
    return "\n".join(line for line in text.split("\n") if line.strip())


def new_trace_id() -> str:
    return uuid.uuid4().hex[:16]


def build_generate_payload(
    prompt: str,
    is_custom: bool,
    model: str,
    tags: str | None = None,
    title: str | None = None,
    make_instrumental: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "mv": model,
        "prompt": "",
        "make_instrumental": False,
    }
    if is_custom:
        payload["tags"] = tags
        payload["title"] = title
        payload["prompt"] = prompt
    else:
        payload["gpt_description_prompt"] = prompt
    if make_instrumental:
        payload["make_instrumental"] = True
        payload["prompt"] = ""
    return payload


class SunoClient:
    """Facade over one Suno account.

    Construct with an already-selected ``Service`` and the relay list, then
    ``await client.init()`` (or use ``new_suno_client``). Only generation
    submissions pass through the admission queue; lyrics, feed and billing
    calls go straight out.
    """

    def __init__(
        self,
        service: Service,
        relays: list[RelayEndpoint] | tuple[RelayEndpoint, ...] = (),
        settings: ClientSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.service = service
        self.settings = settings or ClientSettings()
        self.origin = (service.api_base or self.settings.api_base).rstrip("/")

        self._http = httpx.AsyncClient(
            transport=transport,
            headers={
                "User-Agent": USER_AGENT,
                "Cookie": service.api_key,
                "Referer": "https://suno.com/",
                "Origin": "https://suno.com",
            },
            follow_redirects=True,
        )
        # audio lives on a public CDN; it must never see the account cookie
        self._cdn = httpx.AsyncClient(
            transport=transport,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        self._handshake = SessionHandshake(
            self._http,
            self.settings.clerk_base,
            self.settings.clerk_js_version,
            timeout=self.settings.auth_timeout,
        )
        self._tokens = TokenRenewer(
            self._http,
            self.settings.clerk_base,
            self.settings.clerk_js_version,
            timeout=self.settings.auth_timeout,
            max_age=self.settings.token_max_age,
        )
        self._relays = RelaySelector(relays, self.origin, rng=rng)
        self._queue = AdmissionQueue(self.settings.max_concurrent_generations)
        self._cancellations = CancellationRegistry()

    @property
    def token(self) -> str | None:
        return self._tokens.token

    @property
    def session_id(self) -> str | None:
        return self._tokens.session_id

    @property
    def queue(self) -> AdmissionQueue:
        return self._queue

    @property
    def cancellations(self) -> CancellationRegistry:
        return self._cancellations

    async def __aenter__(self) -> SunoClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._cdn.aclose()

    # -- token lifecycle -------------------------------------------------

    async def init(self) -> SunoClient:
        """Run the session handshake and fetch the first token."""
        session_id = await self._handshake.acquire_session()
        self._tokens.session_id = session_id
        await self._tokens.renew(session_id)
        return self

    async def keep_alive(self) -> str:
        """Force a token renewal; concurrent callers share one round trip."""
        if not self._tokens.session_id:
            raise TokenRenewalError(
                "Session ID is not set. Cannot renew token.", operation="keep_alive"
            )
        try:
            return await self._tokens.renew(self._tokens.session_id)
        except TokenRenewalError as e:
            raise TokenRenewalError(e.message, operation="keep_alive") from e

    async def _ensure_token(self, operation: str) -> str:
        try:
            return await self._tokens.ensure_fresh()
        except TokenRenewalError as e:
            raise TokenRenewalError(e.message, operation=operation) from e

    # -- transport -------------------------------------------------------

    def _headers(self, route: Route, trace_id: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._tokens.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        headers.update(
            relay_headers(route, trace_id, self.settings.relay_api_key, self.origin)
        )
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        route: Route | None = None,
        trace_id: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        route = route or self._relays.select()
        trace_id = trace_id or new_trace_id()
        url = f"{route.base_url}{path}"
        logger.debug("%s %s %s (trace=%s)", operation, method, url, trace_id)
        return await self._cancellations.run(
            trace_id,
            self._send(operation, method, url, self._headers(route, trace_id), **kwargs),
            self.settings.request_timeout,
            operation=operation,
        )

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        headers: dict[str, str],
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            resp = await self._http.request(
                method, url, headers=headers, timeout=self.settings.request_timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(str(e) or "request timed out", operation=operation) from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__, operation=operation) from e

        if not resp.is_success:
            raise RemoteRejectionError(
                f"status {resp.status_code}: {resp.text[:300]}",
                operation=operation,
                status_code=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response, operation: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"malformed JSON response: {e}", operation=operation) from e

    # -- generation (queued) ---------------------------------------------

    async def generate(
        self, prompt: str, make_instrumental: bool = False, trace_id: str | None = None
    ) -> SunoReqReturn:
        return await self.make_generate_request(
            prompt, False, make_instrumental=make_instrumental, trace_id=trace_id
        )

    async def custom_generate(
        self,
        prompt: str,
        tags: str,
        title: str,
        make_instrumental: bool = False,
        trace_id: str | None = None,
    ) -> SunoReqReturn:
        return await self.make_generate_request(
            prompt,
            True,
            tags=tags,
            title=title,
            make_instrumental=make_instrumental,
            trace_id=trace_id,
        )

    async def make_generate_request(
        self,
        prompt: str,
        is_custom: bool,
        tags: str | None = None,
        title: str | None = None,
        make_instrumental: bool = False,
        trace_id: str | None = None,
    ) -> SunoReqReturn:
        operation = "custom_generate" if is_custom else "generate"
        await self._ensure_token(operation)
        route = self._relays.select()
        payload = build_generate_payload(
            prompt,
            is_custom,
            self.settings.model,
            tags=tags,
            title=title,
            make_instrumental=make_instrumental,
        )

        async def submit() -> list[str]:
            # slots can open long after enqueue, so check the token again
            await self._ensure_token(operation)
            resp = await self._request(
                operation,
                "POST",
                "/api/generate/v2/",
                route=route,
                trace_id=trace_id,
                json=payload,
            )
            return self._clip_ids(resp, operation)

        song_ids = await self._queue.enqueue(submit)
        logger.info("Started generation: %s", song_ids)
        return SunoReqReturn(api_key=self.service.api_key, song_ids=song_ids)

    @staticmethod
    def _clip_ids(resp: httpx.Response, operation: str) -> list[str]:
        try:
            clips = resp.json()["clips"]
            song_ids = [clip["id"] for clip in clips]
        except (ValueError, KeyError, TypeError) as e:
            raise QueueTaskError(
                f"unexpected generation response: {resp.text[:300]}", operation=operation
            ) from e
        if not song_ids:
            raise QueueTaskError("No clips returned", operation=operation)
        return song_ids

    # -- lyrics ----------------------------------------------------------

    async def generate_lyrics(self, prompt: str, trace_id: str | None = None) -> str:
        """Start a lyrics generation and return its id."""
        await self._ensure_token("generate_lyrics")
        resp = await self._request(
            "generate_lyrics",
            "POST",
            "/api/generate/lyrics/",
            trace_id=trace_id,
            json={"prompt": prompt},
        )
        data = self._json(resp, "generate_lyrics")
        if not isinstance(data, dict) or not data.get("id"):
            raise TransportError("lyrics response has no id", operation="generate_lyrics")
        return data["id"]

    async def get_lyrics(self, lyric_id: str, trace_id: str | None = None) -> LyricsResult:
        await self._ensure_token("get_lyrics")
        resp = await self._request(
            "get_lyrics", "GET", f"/api/generate/lyrics/{lyric_id}", trace_id=trace_id
        )
        data = self._json(resp, "get_lyrics")
        if not isinstance(data, dict):
            raise TransportError("lyrics response is not an object", operation="get_lyrics")
        return LyricsResult(
            lyric_id=lyric_id,
            status=data.get("status", ""),
            lyrics=parse_lyrics(data.get("text")),
        )

    # -- songs -----------------------------------------------------------

    async def get_songs(
        self, song_ids: list[str] | None = None, trace_id: str | None = None
    ) -> list[SunoAudioInfo]:
        await self._ensure_token("get_songs")
        route = self._relays.select()
        params = {"ids": ",".join(song_ids)} if song_ids else None
        resp = await self._request(
            "get_songs", "GET", "/api/feed/", route=route, trace_id=trace_id, params=params
        )
        data = self._json(resp, "get_songs")
        clips = data.get("clips") if isinstance(data, dict) else data
        if not isinstance(clips, list):
            raise TransportError("feed response is not a list", operation="get_songs")
        try:
            return [
                SunoAudioInfo.from_feed(audio, self.service.api_key, route.base_url)
                for audio in clips
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"malformed feed entry: {e}", operation="get_songs") from e

    async def get_song_results(self, song_ids: list[str]) -> list[SunoAudioInfo] | None:
        """Return the songs with audio bytes once all are playable, else None."""
        songs = await self.get_songs(song_ids)
        if not all(song.status in SETTLED_STATUSES for song in songs):
            return None

        credits = await self.get_credits()
        contents = await asyncio.gather(
            *(self._download_audio(song.audio_url) for song in songs)
        )
        for song, content in zip(songs, contents):
            song.content = content
            song.remaining_credits = credits
        return songs

    async def _download_audio(self, url: str | None) -> bytes:
        if not url:
            return b""
        operation = "download_audio"

        async def fetch() -> bytes:
            chunks: list[bytes] = []
            try:
                async with self._cdn.stream(
                    "GET", url, timeout=self.settings.request_timeout
                ) as stream:
                    if not stream.is_success:
                        raise RemoteRejectionError(
                            f"status {stream.status_code} for {url}",
                            operation=operation,
                            status_code=stream.status_code,
                        )
                    async for chunk in stream.aiter_bytes(chunk_size=65536):
                        chunks.append(chunk)
            except httpx.TimeoutException as e:
                raise RequestTimeoutError(str(e) or "download timed out", operation=operation) from e
            except httpx.HTTPError as e:
                raise TransportError(str(e) or type(e).__name__, operation=operation) from e
            return b"".join(chunks)

        return await self._cancellations.run(
            new_trace_id(), fetch(), self.settings.request_timeout, operation=operation
        )

    # -- billing ---------------------------------------------------------

    async def get_credits(self, trace_id: str | None = None) -> int:
        """Remaining Suno credits for this account."""
        await self._ensure_token("get_credits")
        resp = await self._request("get_credits", "GET", "/api/billing/info/", trace_id=trace_id)
        data = self._json(resp, "get_credits")
        try:
            return int(data["total_credits_left"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(
                "billing response has no total_credits_left", operation="get_credits"
            ) from e

    # -- control ---------------------------------------------------------

    def stop(self, trace_id: str) -> bool:
        """Abort the in-flight call started with ``trace_id``."""
        return self._cancellations.stop(trace_id)

    def get_status(self) -> dict[str, Any]:
        age = self._tokens.token_age
        return {
            "session": bool(self._tokens.session_id),
            "token": bool(self._tokens.token),
            "token_age": round(age, 1) if age is not None else None,
            "renewals": self._tokens.renewal_count,
            "queue": self._queue.get_stats(),
            "in_flight": len(self._cancellations),
            "relays": len(self._relays.relays),
        }


async def new_suno_client(
    services: list[Service],
    relays: list[RelayEndpoint],
    api_key: str | None = None,
    settings: ClientSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SunoClient:
    """Pick a credential, build a client and run its handshake."""
    service = pick_service(services, DEFAULT_MODEL, api_key=api_key)
    client = SunoClient(service, relays, settings, transport=transport)
    try:
        return await client.init()
    except BaseException:
        await client.aclose()
        raise

"""Suno relay MCP server.

Exposes the async Suno client (token keep-alive, bounded generation queue,
relay routing) as MCP tools.
"""

import asyncio
import json
import logging
import os

from mcp.server.fastmcp import FastMCP

from suno_client import SunoAudioInfo, SunoClient, new_suno_client, new_trace_id
from suno_config import ClientSettings, load_relays, load_services
from suno_errors import RequestTimeoutError, SunoError

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("suno-relay")

TOOL_RESPONSE_FORMAT = os.environ.get("TOOL_RESPONSE_FORMAT", "text").strip().lower()
SUNO_API_KEY = os.environ.get("SUNO_API_KEY", "") or None
POLL_INTERVAL = 5.0
POLL_TIMEOUT = 300.0

MCP_PORT = int(os.environ.get("MCP_PORT", "8888"))

mcp = FastMCP("suno-relay-mcp", host="0.0.0.0", port=MCP_PORT)

_client: SunoClient | None = None
_client_lock = asyncio.Lock()


async def _get_client() -> SunoClient:
    """Build the shared client on first use. A failed handshake is retried on the next call."""
    global _client
    async with _client_lock:
        if _client is None:
            _client = await new_suno_client(
                load_services(),
                load_relays(),
                api_key=SUNO_API_KEY,
                settings=ClientSettings.from_env(),
            )
        return _client


def _tool_response(message: str, status: str = "ok", **meta: object) -> str:
    """Return tool output in text (default) or JSON format for agent clients."""
    payload = {"status": status, "message": message}
    if meta:
        payload["meta"] = meta

    if TOOL_RESPONSE_FORMAT == "json":
        return json.dumps(payload, ensure_ascii=False, default=str)

    if not meta:
        return message

    meta_lines = [f"{k}: {v}" for k, v in meta.items()]
    return message + "\n" + "\n".join(meta_lines)


def _error_response(exc: Exception) -> str:
    if isinstance(exc, SunoError):
        logger.warning("%s", exc)
        return _tool_response(str(exc), status="error", phase=exc.phase)
    logger.exception("Unexpected tool failure")
    return _tool_response(f"Error: {exc}", status="error", phase="unexpected")


def _format_song(song: SunoAudioInfo) -> str:
    line = f"{song.id} [{song.status}] {song.title or '(untitled)'}"
    if song.audio_url:
        line += f"\n  Audio: {song.audio_url}"
    if song.duration:
        line += f"\n  Duration: {song.duration}"
    return line


async def _poll_songs(
    client: SunoClient,
    song_ids: list[str],
    timeout: float | None = None,
    trace_id: str | None = None,
) -> list[SunoAudioInfo]:
    """Poll the feed until every clip is playable or errored.

    Each feed read runs under ``trace_id``, so ``stop_request`` can abort the wait.
    """
    if timeout is None:
        timeout = POLL_TIMEOUT
    start_time = asyncio.get_running_loop().time()

    while True:
        elapsed = asyncio.get_running_loop().time() - start_time
        if elapsed > timeout:
            raise RequestTimeoutError(
                f"Generation did not finish within {timeout:.0f}s", operation="poll_songs"
            )

        songs = await client.get_songs(song_ids, trace_id=trace_id)
        if songs and all(song.status in ("complete", "streaming", "error") for song in songs):
            return songs

        logger.info("Generation in progress... (%.0fs)", elapsed)
        await asyncio.sleep(POLL_INTERVAL)


async def _generation_result(client: SunoClient, song_ids: list[str], wait: bool, trace_id: str) -> str:
    if not wait:
        return _tool_response(
            f"Started generation: {', '.join(song_ids)}",
            song_ids=",".join(song_ids),
            trace_id=trace_id,
        )
    songs = await _poll_songs(client, song_ids, trace_id=trace_id)
    return _tool_response("\n".join(_format_song(s) for s in songs), song_ids=",".join(song_ids))


@mcp.tool()
async def generate_song(
    prompt: str,
    instrumental: bool = False,
    wait: bool = False,
    trace_id: str | None = None,
) -> str:
    """Generate songs from a free-form description.

    Args:
        prompt: Description of the song (Suno writes lyrics and picks a style).
        instrumental: If True, generate without vocals.
        wait: If True, poll until the clips are playable before returning.
        trace_id: Id to pass to stop_request to abort this call. Generated if omitted.
    """
    trace_id = trace_id or new_trace_id()
    try:
        client = await _get_client()
        result = await client.generate(prompt, make_instrumental=instrumental, trace_id=trace_id)
        return await _generation_result(client, result.song_ids, wait, trace_id)
    except Exception as e:
        return _error_response(e)


@mcp.tool()
async def custom_generate_song(
    prompt: str,
    tags: str,
    title: str,
    instrumental: bool = False,
    wait: bool = False,
    trace_id: str | None = None,
) -> str:
    """Generate songs from explicit lyrics, style tags and title.

    Args:
        prompt: Lyrics text. Ignored when instrumental is True.
        tags: Style/genre description (e.g. "lo-fi, mellow, rainy night").
        title: Track title.
        instrumental: If True, generate without vocals.
        wait: If True, poll until the clips are playable before returning.
        trace_id: Id to pass to stop_request to abort this call. Generated if omitted.
    """
    trace_id = trace_id or new_trace_id()
    try:
        client = await _get_client()
        result = await client.custom_generate(
            prompt, tags, title, make_instrumental=instrumental, trace_id=trace_id
        )
        return await _generation_result(client, result.song_ids, wait, trace_id)
    except Exception as e:
        return _error_response(e)


@mcp.tool()
async def generate_lyrics(prompt: str) -> str:
    """Start a lyrics generation and return its id."""
    try:
        client = await _get_client()
        lyric_id = await client.generate_lyrics(prompt)
        return _tool_response(f"Lyrics generation started: {lyric_id}", lyric_id=lyric_id)
    except Exception as e:
        return _error_response(e)


@mcp.tool()
async def get_lyrics(lyric_id: str) -> str:
    """Fetch generated lyrics by id."""
    try:
        client = await _get_client()
        result = await client.get_lyrics(lyric_id)
        return _tool_response(result.lyrics or "(no lyrics yet)", status_detail=result.status)
    except Exception as e:
        return _error_response(e)


@mcp.tool()
async def get_songs(song_ids: str) -> str:
    """Look up songs by id.

    Args:
        song_ids: Comma-separated clip ids.
    """
    ids = [s.strip() for s in song_ids.split(",") if s.strip()]
    if not ids:
        return _tool_response("No song ids given.", status="error")
    try:
        client = await _get_client()
        songs = await client.get_songs(ids)
        if not songs:
            return _tool_response("No songs found.")
        return "\n".join(_format_song(s) for s in songs)
    except Exception as e:
        return _error_response(e)


@mcp.tool()
async def get_credits() -> str:
    """Check remaining Suno credits."""
    try:
        client = await _get_client()
        credits = await client.get_credits()
        return _tool_response(f"Credits: {credits} remaining", credits=credits)
    except Exception as e:
        return _error_response(e)


@mcp.tool()
async def get_client_status() -> str:
    """Token, queue and relay status of the shared client."""
    if _client is None:
        return _tool_response("Client not initialized yet.", initialized=False)
    return _tool_response("Client status snapshot.", **_client.get_status())


@mcp.tool()
async def stop_request(trace_id: str) -> str:
    """Abort an in-flight generation or its polling by the trace_id the caller passed to it."""
    if _client is None or not _client.stop(trace_id):
        return _tool_response(f"No in-flight request {trace_id}.", status="error")
    return _tool_response(f"Stopped request {trace_id}.")


if __name__ == "__main__":
    import sys

    if "--stdio" in sys.argv:
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse")

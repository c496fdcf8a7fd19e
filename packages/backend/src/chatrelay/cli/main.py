"""chatrelay CLI — run the relay, publish messages, watch channels.

Usage:
    chatrelay serve                              # Start the relay (uvicorn)
    chatrelay publish programming "hi" -s Mona   # Post a chat message
    chatrelay channels                           # Occupied channels + counts
    chatrelay channel programming                # One channel's subscriber count
    chatrelay listen programming tech-news       # Print incoming events
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
import uuid
from typing import Optional

import click
import httpx

from chatrelay import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3000"


def _api_url() -> str:
    return os.environ.get("CHATRELAY_API_URL", DEFAULT_API_URL).rstrip("/")


def _ws_url() -> str:
    url = _api_url()
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):] + "/ws"
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):] + "/ws"
    return url + "/ws"


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the relay."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when an event loop is already running (e.g. when
    invoked through CliRunner inside an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="chatrelay")
def main():
    """chatrelay — self-hosted channel relay for group chat."""


# ---------------------------------------------------------------------------
# chatrelay serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: CHATRELAY_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: CHATRELAY_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Start the relay server."""
    import uvicorn

    from chatrelay.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "chatrelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_config=None,
    )


# ---------------------------------------------------------------------------
# chatrelay publish
# ---------------------------------------------------------------------------


@main.command()
@click.argument("channel")
@click.argument("message")
@click.option("--sender", "-s", default="cli", help="Display name")
@click.option("--user-id", "-u", default=None, help="Sender id (random if omitted)")
def publish(channel: str, message: str, sender: str, user_id: Optional[str]):
    """Post MESSAGE to CHANNEL as a chat message."""
    _run(_publish_impl(channel, message, sender, user_id or uuid.uuid4().hex[:12]))


async def _publish_impl(channel: str, message: str, sender: str, user_id: str):
    async with _client() as c:
        try:
            r = await c.post("/message", json={
                "channel": channel,
                "message": message,
                "sender": sender,
                "user_id": user_id,
            })
        except httpx.ConnectError:
            _fail(f"relay not reachable at {_api_url()}")
        if r.status_code != 200:
            _fail(f"{r.status_code} {r.text}")
        click.secho(f"Sent to {channel}", fg="green")


@main.command("emit")
@click.argument("channel")
@click.argument("event")
@click.argument("payload")
@click.option("--origin", default=None, help="Origin id echoed to clients")
def emit(channel: str, event: str, payload: str, origin: Optional[str]):
    """Publish EVENT with a JSON PAYLOAD to CHANNEL."""
    try:
        data = json.loads(payload)
    except ValueError as e:
        _fail(f"payload is not valid JSON: {e}")
    _run(_emit_impl(channel, event, data, origin))


async def _emit_impl(channel: str, event: str, payload: dict, origin: Optional[str]):
    async with _client() as c:
        try:
            r = await c.post("/api/v1/events", json={
                "channel": channel,
                "event": event,
                "payload": payload,
                "origin": origin,
            })
        except httpx.ConnectError:
            _fail(f"relay not reachable at {_api_url()}")
        if r.status_code != 202:
            _fail(f"{r.status_code} {r.text}")
        report = r.json()
        click.echo(
            f"{event} → {channel}: {report['delivered']}/{report['attempted']} delivered"
        )


# ---------------------------------------------------------------------------
# chatrelay channels / channel
# ---------------------------------------------------------------------------


@main.command()
def channels():
    """List occupied channels."""
    _run(_channels_impl())


async def _channels_impl():
    async with _client() as c:
        r = await c.get("/api/v1/channels")
        r.raise_for_status()
        data = r.json()["channels"]

    if not data:
        click.echo("No occupied channels.")
        return
    rows = [{"channel": name, "count": count} for name, count in data.items()]
    _print_table(rows, [("CHANNEL", "channel", 40), ("SUBSCRIBERS", "count", 11)])


@main.command()
@click.argument("name")
def channel(name: str):
    """Show NAME's subscriber count."""
    _run(_channel_impl(name))


async def _channel_impl(name: str):
    async with _client() as c:
        r = await c.get(f"/api/v1/channels/{name}")
        r.raise_for_status()
        info = r.json()
    state = click.style("occupied", fg="green") if info["occupied"] else "empty"
    click.echo(f"{info['channel']}: {state}, {info['subscription_count']} subscriber(s)")


# ---------------------------------------------------------------------------
# chatrelay listen
# ---------------------------------------------------------------------------


@main.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--user-id", "-u", default=None, help="Own id, to mark outgoing messages")
def listen(names: tuple[str, ...], user_id: Optional[str]):
    """Subscribe to channels NAMES and print every event until Ctrl-C."""
    try:
        _run(_listen_impl(names, user_id))
    except KeyboardInterrupt:
        click.echo()


async def _listen_impl(names: tuple[str, ...], user_id: Optional[str]):
    from chatrelay.client import ClientMessage, RelayClient
    from chatrelay.events.types import MESSAGE_IN, SUBSCRIPTION_COUNT

    client = RelayClient(_ws_url(), user_id=user_id)
    client.on_state_change(
        lambda prev, cur: click.secho(f"[{cur.value}]", fg="cyan", err=True)
    )

    def on_message(msg: ClientMessage):
        who = "you" if msg.outgoing else msg.payload.get("sender", "?")
        click.echo(f"#{msg.channel} <{who}> {msg.payload.get('message', '')}")

    def on_count(msg: ClientMessage):
        click.secho(
            f"#{msg.channel}: {msg.payload.get('subscription_count')} online",
            fg="yellow",
            err=True,
        )

    for name in names:
        ch = await client.subscribe(name)
        ch.bind(MESSAGE_IN, on_message)
        ch.bind(SUBSCRIPTION_COUNT, on_count)

    try:
        await client.run()
    finally:
        await client.disconnect()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()

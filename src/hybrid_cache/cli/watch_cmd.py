"""CLI command for watching invalidation traffic.

Usage:
    hybrid-cache watch --namespace app
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from hybrid_cache.cli.options import (
    LogLevelOption,
    NamespaceOption,
    RedisUrlOption,
    resolve_settings,
)
from hybrid_cache.config import Settings
from hybrid_cache.errors import HybridCacheError
from hybrid_cache.invalidation import InvalidationMessage, MalformedMessage
from hybrid_cache.keys import CacheKeys
from hybrid_cache.remote import RemoteStore

app = typer.Typer(help="Print invalidation messages of a namespace")

console = Console()


@app.callback(invoke_without_command=True)
def watch(
    redis_url: str | None = RedisUrlOption,
    namespace: str | None = NamespaceOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Follow {namespace}:invalidate until interrupted."""
    settings = resolve_settings(redis_url, namespace, log_level)
    if not settings.namespace:
        console.print("[red]A namespace is required to watch invalidations[/red]")
        raise typer.Exit(code=2)

    try:
        asyncio.run(_watch(settings, settings.namespace))
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
    except HybridCacheError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e


def format_message(data: bytes) -> str:
    """One console line for a raw invalidation payload."""
    try:
        message = InvalidationMessage.from_bytes(data)
    except MalformedMessage as e:
        return f"[red]malformed[/red] {e}: {data!r}"
    keys = ", ".join(message.affected_keys)
    return f"[cyan]{message.origin_instance_id}[/cyan] invalidated {keys}"


async def _watch(settings: Settings, namespace: str) -> None:
    channel = CacheKeys(namespace).channel
    remote = RemoteStore.from_url(
        settings.redis_url,
        socket_timeout=None,
        socket_connect_timeout=settings.socket_connect_timeout,
        poll_interval=settings.subscribe_poll_interval,
    )

    async def show(data: bytes) -> None:
        console.print(format_message(data))

    subscription = await remote.subscribe(channel, show)
    console.print(f"[blue]Watching[/blue] {channel}")
    try:
        await asyncio.Event().wait()
    finally:
        await subscription.cancel()
        await remote.close()

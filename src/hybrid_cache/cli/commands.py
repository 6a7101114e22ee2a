"""Key commands: get, set, remove, ping.

Usage:
    hybrid-cache get KEY
    hybrid-cache set KEY VALUE --ttl 60 --wait
    hybrid-cache remove KEY [KEY ...]
    hybrid-cache ping
"""

from __future__ import annotations

import asyncio
from typing import Any

import orjson
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
from hybrid_cache.facade import HybridCache
from hybrid_cache.policy import ErrorPolicy

console = Console()


def parse_value(raw: str) -> Any:
    """Interpret a command-line value as JSON, falling back to a string."""
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return raw


def _open(settings: Settings) -> HybridCache:
    # Remote errors surface as a non-zero exit
    return HybridCache.from_settings(settings, error_policy=ErrorPolicy.propagate())


def get(
    key: str = typer.Argument(..., help="Logical cache key"),
    redis_url: str | None = RedisUrlOption,
    namespace: str | None = NamespaceOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Print the cached value of KEY as JSON."""
    settings = resolve_settings(redis_url, namespace, log_level)
    value = _run(_get(settings, key))
    if value is None:
        console.print(f"[yellow]{key}: not cached[/yellow]")
        raise typer.Exit(code=1)
    console.print_json(orjson.dumps(value).decode())


async def _get(settings: Settings, key: str) -> Any:
    async with _open(settings) as cache:
        return await cache.get(key)


def set_(
    key: str = typer.Argument(..., help="Logical cache key"),
    value: str = typer.Argument(..., help="Value; parsed as JSON when possible"),
    ttl: float | None = typer.Option(None, "--ttl", "-t", help="Lifetime in seconds"),
    wait: bool = typer.Option(
        False,
        "--wait/--no-wait",
        help="Wait for Redis to acknowledge the write",
    ),
    redis_url: str | None = RedisUrlOption,
    namespace: str | None = NamespaceOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Store VALUE under KEY and invalidate it on every instance."""
    parsed = parse_value(value)
    if parsed is None:
        console.print("[red]Error:[/red] null cannot be cached; use remove")
        raise typer.Exit(code=2)
    if ttl is not None and ttl <= 0:
        console.print(f"[red]Error:[/red] --ttl must be positive, got {ttl}")
        raise typer.Exit(code=2)

    settings = resolve_settings(redis_url, namespace, log_level)
    _run(_set(settings, key, parsed, ttl, not wait))
    console.print(f"[green]Set[/green] {key}")


async def _set(
    settings: Settings,
    key: str,
    value: Any,
    ttl: float | None,
    fire_and_forget: bool,
) -> None:
    async with _open(settings) as cache:
        await cache.set(key, value, ttl=ttl, fire_and_forget=fire_and_forget)


def remove(
    keys: list[str] = typer.Argument(..., help="Logical cache keys"),
    redis_url: str | None = RedisUrlOption,
    namespace: str | None = NamespaceOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Remove KEYS from Redis and every instance's local tier."""
    settings = resolve_settings(redis_url, namespace, log_level)
    _run(_remove(settings, keys))
    console.print(f"[green]Removed[/green] {len(keys)} key(s)")


async def _remove(settings: Settings, keys: list[str]) -> None:
    async with _open(settings) as cache:
        await cache.remove_many(keys)


def ping(
    redis_url: str | None = RedisUrlOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Check that Redis is reachable."""
    settings = resolve_settings(redis_url, None, log_level)
    if not _run(_ping(settings)):
        console.print(f"[red]Redis unreachable:[/red] {settings.redis_url}")
        raise typer.Exit(code=1)
    console.print(f"[green]Redis reachable:[/green] {settings.redis_url}")


async def _ping(settings: Settings) -> bool:
    # No subscription needed for a health check
    cache = _open(settings)
    try:
        return await cache.ping()
    finally:
        await cache.close()


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except (HybridCacheError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

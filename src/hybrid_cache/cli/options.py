"""Options shared by the CLI commands."""

from __future__ import annotations

import typer

from hybrid_cache.config import Settings, settings
from hybrid_cache.observability.logging import configure_logging

RedisUrlOption = typer.Option(
    None,
    "--redis-url",
    "-r",
    help="Redis URL (defaults to HYBRID_CACHE_REDIS_URL / REDIS_URL)",
)

NamespaceOption = typer.Option(
    None,
    "--namespace",
    "-n",
    help="Deployment namespace (defaults to HYBRID_CACHE_NAMESPACE)",
)

LogLevelOption = typer.Option(
    None,
    "--log-level",
    "-l",
    help="Log level: debug, info, warning, error",
)


def resolve_settings(
    redis_url: str | None,
    namespace: str | None,
    log_level: str | None = None,
) -> Settings:
    """Apply command-line overrides to the environment settings."""
    update: dict[str, object] = {}
    if redis_url:
        update["redis_url"] = redis_url
    if namespace:
        update["namespace"] = namespace
    resolved = settings.model_copy(update=update)

    configure_logging(
        json_format=resolved.log_json,
        level=log_level or resolved.log_level,
    )
    return resolved

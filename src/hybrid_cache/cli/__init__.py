"""CLI commands for hybrid-cache.

Provides command-line interface using Typer:
- hybrid-cache get: Read a key through both tiers
- hybrid-cache set: Write a key and announce the invalidation
- hybrid-cache remove: Remove keys everywhere
- hybrid-cache ping: Check Redis connectivity
- hybrid-cache watch: Print invalidation messages of a namespace

Usage:
    hybrid-cache --help
    hybrid-cache set user:42 '{"name": "Ada"}' --ttl 300 --namespace app
    hybrid-cache get user:42 --namespace app
    hybrid-cache watch --namespace app
"""

import typer

from hybrid_cache.cli import commands
from hybrid_cache.cli.watch_cmd import app as watch_app

# Main CLI application
app = typer.Typer(
    name="hybrid-cache",
    help="hybrid-cache: local + Redis cache with Pub/Sub invalidation",
    no_args_is_help=True,
)

app.command("get")(commands.get)
app.command("set")(commands.set_)
app.command("remove")(commands.remove)
app.command("ping")(commands.ping)
app.add_typer(watch_app, name="watch")


@app.callback()
def callback() -> None:
    """hybrid-cache: local + Redis cache with Pub/Sub invalidation."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

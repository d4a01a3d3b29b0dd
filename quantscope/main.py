"""Entry point for quantscope."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from quantscope.auth.credentials import CredentialStore, resolve_api_key
from quantscope.cache.store import CacheStore
from quantscope.config import settings
from quantscope.plans.limits import plan_note
from quantscope.session.coordinator import Coordinator

console = Console()


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.effective_log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def run_server() -> None:
    """Start the tool server."""
    console.print(Panel("Starting quantscope tool server", style="bold green"))
    uvicorn.run(
        "quantscope.api.server:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_init(api_key: str | None) -> int:
    """Initialize a session once and print the resolved plan."""
    credentials = CredentialStore()
    key, source = resolve_api_key(api_key, credentials)
    if not key:
        console.print("[bold red]No API key.[/bold red] Set CRYPTOQUANT_API_KEY or pass --api-key.")
        return 1

    coordinator = Coordinator()
    with console.status("[bold green]Resolving plan and endpoint catalog..."):
        result = asyncio.run(coordinator.initialize(key, settings.api_url()))

    if not result.success:
        console.print(f"[bold red]Initialization failed:[/bold red] {result.error}")
        return 1

    if source == "param":
        credentials.save(key)
    elif source == "stored":
        credentials.touch_validated()

    state = coordinator.state
    console.print(Panel(
        f"Plan: [bold]{state.plan.value}[/bold] ({plan_note(state.plan)})\n"
        f"Cache: {result.cache_status}",
        title="quantscope",
        style="bold blue",
    ))
    if result.discovery_error:
        console.print(f"[yellow]Discovery partial:[/yellow] {result.discovery_error}")

    if result.summary:
        table = Table("Asset", "Endpoints", "Categories")
        for asset in result.summary.assets:
            table.add_row(asset.name, str(asset.endpoint_count), str(len(asset.categories)))
        console.print(table)
    return 0


def run_reset(clear_stored: bool, clear_cache: bool) -> int:
    if clear_stored:
        CredentialStore().clear()
        console.print("Cleared stored credentials")
    if clear_cache:
        CacheStore().clear_all()
        console.print("Cleared discovery cache")
    if not (clear_stored or clear_cache):
        console.print("[dim]Nothing to clear[/dim]")
    return 0


def main() -> None:
    _configure_logging()
    parser = argparse.ArgumentParser(description="quantscope: tier-aware metric endpoint gateway")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the tool server")

    init_parser = sub.add_parser("init", help="Resolve plan limits and endpoint catalog")
    init_parser.add_argument("--api-key", default=None, help="API key (else env / stored)")

    reset_parser = sub.add_parser("reset", help="Clear stored credentials and/or cache")
    reset_parser.add_argument("--clear-stored", action="store_true")
    reset_parser.add_argument("--clear-cache", action="store_true")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "init":
        sys.exit(run_init(args.api_key))
    elif args.command == "reset":
        sys.exit(run_reset(args.clear_stored, args.clear_cache))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

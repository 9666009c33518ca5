"""CLI entry point for bitbucket-exporter.

Commands:
- serve: Expose metrics over HTTP and collect periodically
- collect: Run a single collection cycle and print the metrics
"""

import asyncio
import logging
import signal
from pathlib import Path

import click
import yaml
from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
    start_http_server,
)
from pydantic import ValidationError
from rich.console import Console

from bitbucket_exporter import __version__
from bitbucket_exporter.bitbucket.auth import BitbucketAuth
from bitbucket_exporter.bitbucket.exceptions import AuthenticationError
from bitbucket_exporter.bitbucket.http import BitbucketClient
from bitbucket_exporter.collector.collector import BitbucketCollector, ScrapeResult
from bitbucket_exporter.config import ConfigHandler
from bitbucket_exporter.logging import setup_logging

console = Console(stderr=True)
logger = logging.getLogger(__name__)

DEFAULT_PORT = 9171
DEFAULT_INTERVAL = 300.0

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=Path("config.yaml"),
    show_default=True,
    help="Path to the exporter configuration file",
)


@click.group()
@click.version_option(version=__version__, prog_name="bitbucket-exporter")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
@click.option("--log-json", is_flag=True, default=False, help="Log in JSON format")
@click.pass_context
def main(ctx: click.Context, verbose: bool, log_json: bool) -> None:
    """Prometheus exporter for Bitbucket Cloud.

    Collects repository, refs, commit and workspace member metrics from the
    Bitbucket 2.0 API.

    \b
    Quick Start:
        1. Check the configuration: bitbucket-exporter collect --config config.yaml
        2. Serve metrics: bitbucket-exporter serve --config config.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose=verbose, json_format=log_json)


def _load(config_path: Path) -> tuple[ConfigHandler, BitbucketAuth]:
    handler = ConfigHandler()
    try:
        handler.reload_config(config_path)
        auth = BitbucketAuth(handler.config.auth)
    except (ValidationError, yaml.YAMLError, AuthenticationError) as e:
        console.print(f"[bold red]Error loading config {config_path}:[/bold red] {e}")
        raise click.Abort() from e
    return handler, auth


def _print_results(results: dict[str, ScrapeResult]) -> int:
    failed = 0
    for name, result in sorted(results.items()):
        duration = result.duration_seconds or 0.0
        if result.success:
            console.print(f"  [green]✓[/green] {name} ({duration:.2f}s)")
        else:
            failed += 1
            console.print(f"  [red]✗[/red] {name} ({duration:.2f}s): {result.error}")
    return failed


@main.command()
@config_option
@click.option(
    "--listen-address",
    default="0.0.0.0",
    show_default=True,
    help="Address the metrics server binds to",
)
@click.option("--port", "-p", type=int, default=DEFAULT_PORT, show_default=True)
@click.option(
    "--interval",
    type=float,
    default=DEFAULT_INTERVAL,
    show_default=True,
    help="Seconds between the end of a collection cycle and the start of the next",
)
def serve(config_path: Path, listen_address: str, port: int, interval: float) -> None:
    """Serve metrics over HTTP and collect periodically.

    Send SIGHUP to reload the configuration; it applies from the next cycle.
    """
    handler, auth = _load(config_path)
    exporter = BitbucketCollector(handler.config)

    registry = CollectorRegistry()
    registry.register(exporter)
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)

    start_http_server(port, addr=listen_address, registry=registry)
    console.print(f"[bold]Serving metrics on {listen_address}:{port}[/bold]")

    asyncio.run(_serve_loop(exporter, handler, auth, config_path, interval))
    console.print("[yellow]Exporter stopped[/yellow]")


async def _serve_loop(
    exporter: BitbucketCollector,
    handler: ConfigHandler,
    auth: BitbucketAuth,
    config_path: Path,
    interval: float,
) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    reload_requested = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    loop.add_signal_handler(signal.SIGHUP, reload_requested.set)

    while not stop.is_set():
        if reload_requested.is_set():
            reload_requested.clear()
            try:
                config = handler.reload_config(config_path)
                auth = BitbucketAuth(config.auth)
            except (FileNotFoundError, ValidationError, yaml.YAMLError, AuthenticationError) as e:
                logger.error("Config reload failed, keeping previous config: %s", e)
            else:
                exporter.update_config(config)

        async with BitbucketClient(auth=auth) as client:
            cycle = asyncio.create_task(exporter.run(client))
            stopper = asyncio.create_task(stop.wait())
            await asyncio.wait({cycle, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if not cycle.done():
                logger.info("Stopping, abandoning in-flight collection cycle")
                cycle.cancel()
            results = (await asyncio.gather(cycle, return_exceptions=True))[0]

        if isinstance(results, dict):
            failed = [name for name, r in results.items() if not r.success]
            logger.info("Collection cycle finished, %d collectors failed %s", len(failed), failed)

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except TimeoutError:
            pass


@main.command()
@config_option
def collect(config_path: Path) -> None:
    """Run one collection cycle and print the metrics.

    The exposition text goes to stdout, progress and errors to stderr. Exits
    with an error when any collector failed.
    """
    handler, auth = _load(config_path)
    exporter = BitbucketCollector(handler.config)
    registry = CollectorRegistry()
    registry.register(exporter)

    console.print("[cyan]Running collection cycle...[/cyan]")

    async def run_once() -> dict[str, ScrapeResult]:
        async with BitbucketClient(auth=auth) as client:
            return await exporter.run(client)

    try:
        results = asyncio.run(run_once())
    except KeyboardInterrupt:
        console.print("\n[yellow]Collection interrupted by user[/yellow]")
        raise click.Abort() from None

    click.echo(generate_latest(registry).decode("utf-8"), nl=False)

    failed = _print_results(results)
    if failed:
        console.print(f"[bold red]{failed} collector(s) failed[/bold red]")
        raise click.Abort()
    console.print("[bold green]Collection complete![/bold green]")


if __name__ == "__main__":
    main()

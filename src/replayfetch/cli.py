"""
replayfetch CLI - Command Line Interface for share code demo retrieval

Provides commands for:
- Decoding share codes and building replay URLs
- Probing replay shards
- Resolving and downloading demos
- Sweeping old downloads
- Inspecting rate limit counters
"""

import logging
import threading
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from replayfetch import __version__
from replayfetch.core.config import (
    ReplayFetchConfig,
    configure_logging,
    generate_default_config,
    get_config,
    load_config,
    set_config,
)
from replayfetch.errors import ShardNotFound
from replayfetch.fetcher import DemoFetcher
from replayfetch.infra.ratelimit import build_rate_limiter, default_policies
from replayfetch.integrations.demo_url import URLResolver
from replayfetch.integrations.shards import ShardResolver
from replayfetch.retention import RetentionSweeper, sweep_older_than
from replayfetch.sharecode import build_demo_url, decode_sharecode

app = typer.Typer(
    name="replayfetch",
    help="Turn CS2 match share codes into downloaded, verified demo files",
    add_completion=False,
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]replayfetch[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output"
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a replayfetch.yaml/.toml/.json config file",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """replayfetch - CS2 share code demo retrieval"""
    if config_file is not None:
        set_config(load_config(config_file))
    configure_logging(get_config().logging)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _build_fetcher(config: ReplayFetchConfig) -> DemoFetcher:
    limiter = build_rate_limiter(config)
    resolver = URLResolver.from_config(config, limiter)
    return DemoFetcher.from_config(config, resolver)


@app.command()
def decode(
    share_code: str = typer.Argument(
        ...,
        help="CS2 share code (e.g., CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx)"
    )
) -> None:
    """
    Decode a CS2 share code to extract match metadata.

    The share code contains encoded information about the match
    including match ID, outcome ID, and token ID.
    """
    try:
        info = decode_sharecode(share_code)

        panel = Panel(
            f"[cyan]Match ID:[/cyan] {info.match_id}\n"
            f"[cyan]Outcome ID:[/cyan] {info.outcome_id}\n"
            f"[cyan]Token ID:[/cyan] {info.token_id}",
            title="[bold blue]Share Code Decoded[/bold blue]",
            expand=False,
        )
        console.print(panel)

    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def url(
    share_code: str = typer.Argument(..., help="CS2 share code"),
    shard: int = typer.Option(1, "--shard", "-s", min=1, help="Replay server number"),
) -> None:
    """Print the replay CDN URL for a share code on a given shard."""
    try:
        console.print(build_demo_url(decode_sharecode(share_code), shard), soft_wrap=True)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command("find-shard")
def find_shard(
    share_code: str = typer.Argument(..., help="CS2 share code"),
) -> None:
    """Probe the replay shards until one serves the demo."""
    config = get_config()
    try:
        info = decode_sharecode(share_code)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    resolver = ShardResolver(
        candidates=config.download.probe_shards,
        timeout=config.download.probe_timeout_seconds,
    )
    with console.status("Probing replay shards..."):
        try:
            shard = resolver.find_shard(info)
        except ShardNotFound as e:
            console.print(f"[yellow]{e}[/yellow]")
            raise typer.Exit(2)

    console.print(f"[green]Shard {shard}:[/green] {build_demo_url(info, shard)}")


@app.command()
def resolve(
    share_code: str = typer.Argument(..., help="CS2 share code"),
    probe: bool = typer.Option(
        False, "--probe/--no-probe", help="Fall back to shard probing if the service has no URL"
    ),
) -> None:
    """Ask the demo URL service for a share code's demo URL."""
    config = get_config()
    resolver = URLResolver.from_config(config, build_rate_limiter(config))
    resolution = resolver.resolve_detailed(share_code, allow_probe=probe)

    if not resolution.ok:
        console.print(
            f"[yellow]No demo URL[/yellow] ({resolution.status.value}) {resolution.detail}"
        )
        raise typer.Exit(2)

    console.print(f"[green]{resolution.url}[/green] (via {resolution.service})")


@app.command()
def fetch(
    share_code: str = typer.Argument(..., help="CS2 share code"),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory for the downloaded demo (defaults to the configured temp directory)",
        file_okay=False,
    ),
    probe: bool = typer.Option(
        False, "--probe/--no-probe", help="Fall back to shard probing if the service has no URL"
    ),
    deadline: Optional[float] = typer.Option(
        None, "--deadline", help="Give up after this many seconds"
    ),
) -> None:
    """
    Resolve and download the demo for a share code.

    The file is only kept if it downloaded completely and is within the
    configured size limit.
    """
    config = get_config()
    if output_dir is not None:
        config.download.temp_directory = str(output_dir)

    fetcher = _build_fetcher(config)
    absolute_deadline = time.monotonic() + deadline if deadline is not None else None

    with console.status(f"Fetching demo for {share_code}..."):
        result = fetcher.fetch_detailed(share_code, allow_probe=probe, deadline=absolute_deadline)

    if not result.ok:
        failed_phase = result.failed_phase.value if result.failed_phase else "unknown"
        console.print(f"[red]Fetch failed[/red] during {failed_phase}: {result.reason}")
        raise typer.Exit(1)

    table = Table(show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Path", str(result.artifact.path))
    table.add_row("Size", f"{result.artifact.size_bytes:,} bytes")
    table.add_row("Source", result.demo_url or "")
    console.print(table)


@app.command()
def sweep(
    directory: Optional[Path] = typer.Option(
        None, "--dir", "-d", help="Directory to sweep (defaults to the configured temp directory)"
    ),
    max_age_hours: Optional[float] = typer.Option(
        None, "--max-age-hours", help="Delete demos older than this"
    ),
    watch: bool = typer.Option(
        False, "--watch", "-w", help="Keep sweeping on the configured interval until interrupted"
    ),
) -> None:
    """Delete downloaded demos older than the retention age."""
    config = get_config()
    directory = directory or config.download.resolved_temp_directory()
    hours = max_age_hours if max_age_hours is not None else config.retention.max_age_hours

    if watch:
        sweeper = RetentionSweeper.from_config(config)
        sweeper.directory = Path(directory)
        sweeper.max_age_seconds = hours * 3600
        stop = threading.Event()

        console.print(
            f"[bold]Sweeping[/bold] {directory} every {sweeper.interval_seconds:.0f}s (Ctrl+C to stop)"
        )
        try:
            sweeper.run_forever(stop)
        except KeyboardInterrupt:
            console.print("\n[yellow]Stopping sweeper...[/yellow]")
            stop.set()
        return

    deleted = sweep_older_than(directory, hours * 3600)
    for path in deleted:
        console.print(f"[dim]deleted[/dim] {path}")
    console.print(f"[green]Removed {len(deleted)} file(s)[/green] from {directory}")


@app.command()
def limits() -> None:
    """Show the current rate limit counters."""
    config = get_config()
    limiter = build_rate_limiter(config)

    table = Table(title="Rate limits")
    table.add_column("Service", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Window", justify="right")
    table.add_column("Resets in", justify="right")

    for policy in default_policies(config.rate_limits).values():
        remaining = limiter.window_remaining(policy.service)
        table.add_row(
            policy.service,
            str(limiter.current(policy.service)),
            str(policy.max_requests),
            f"{policy.window_seconds}s" if policy.window_seconds else "concurrent",
            f"{remaining:.0f}s" if remaining is not None else "-",
        )

    console.print(table)


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(Path("replayfetch.yaml"), help="Where to write the config file"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a default configuration file."""
    if path.exists() and not force:
        console.print(f"[red]Error:[/red] {path} already exists (use --force)")
        raise typer.Exit(1)

    try:
        generate_default_config(path)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Wrote[/green] {path}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

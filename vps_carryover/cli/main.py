"""
CLI interface for VPS bandwidth carry-over.

Thin layer over the engine's run_all / run_one / list_roster operations.
"""

import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from vps_carryover.config.loader import (
    DEFAULT_CONFIG_PATH,
    PanelConfig,
    load_panel_config,
    parse_over_usage_policy,
    write_default_config,
)
from vps_carryover.core.engine import CarryOverEngine
from vps_carryover.core.errors import (
    ConfigUnavailable,
    MalformedResponse,
    NotFound,
    PanelError,
    SchemaError,
)
from vps_carryover.core.scheduler import RunResult
from vps_carryover.storage.run_log import configure_run_log, write_run_header

app = typer.Typer()
console = Console()

EXIT_CODE_SUCCESS = 0
EXIT_CODE_CONFIG = 1      # Config or credentials unavailable
EXIT_CODE_TRANSPORT = 2   # Roster fetch failed in transport
EXIT_CODE_PARSE = 3       # Roster response unusable
EXIT_CODE_NOT_FOUND = 4
EXIT_CODE_PARTIAL = 5     # Completed, at least one server failed

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_PATH,
    "--config",
    "-c",
    envvar="VPS_CARRYOVER_CONFIG",
    help="Path to YAML configuration file",
)


def _error_to_exit_code(error: PanelError) -> int:
    """Convert a fatal engine error to CLI exit code."""
    if isinstance(error, ConfigUnavailable):
        return EXIT_CODE_CONFIG
    if isinstance(error, NotFound):
        return EXIT_CODE_NOT_FOUND
    if isinstance(error, (SchemaError, MalformedResponse)):
        return EXIT_CODE_PARSE
    return EXIT_CODE_TRANSPORT


def _result_to_exit_code(result: RunResult) -> int:
    return EXIT_CODE_SUCCESS if result.success else EXIT_CODE_PARTIAL


def _load_config(path: str, **overrides) -> PanelConfig:
    """Load configuration or exit with the config error code."""
    try:
        return load_panel_config(path).with_overrides(**overrides)
    except ConfigUnavailable as e:
        console.print(f"[red]Configuration unavailable:[/] {e.message}")
        console.print(f"Run `vps-carryover init --config {path}` and fill in the panel credentials.")
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
    sys.exit(EXIT_CODE_CONFIG)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """VPS bandwidth carry-over CLI."""
    if ctx.invoked_subcommand is None:
        console.print("VPS Bandwidth Carry-Over - Use --help to see available commands")


@app.command()
def init(config_path: str = CONFIG_OPTION):
    """Write a default configuration file."""
    try:
        if write_default_config(config_path):
            console.print(f"[green]✓[/] Created default config at {config_path}. Please configure.")
        else:
            console.print(f"Config already exists at {config_path}")
        sys.exit(EXIT_CODE_SUCCESS)
    except OSError as e:
        console.print(f"[red]Error writing config:[/] {str(e)}")
        sys.exit(EXIT_CODE_CONFIG)


@app.command()
def status(config_path: str = CONFIG_OPTION):
    """Show the resolved configuration."""
    config = _load_config(config_path)

    table = Table(title="Carry-over configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Host", config.host or "-")
    table.add_row("API base", _mask_api_base(config))
    table.add_row("Parallel jobs", str(config.parallel_jobs))
    table.add_row("Over-usage policy", config.over_usage_policy.value)
    table.add_row("Page size", str(config.page_size))
    table.add_row("Retries", str(config.retries))
    table.add_row("Run log", str(config.run_log_path))
    table.add_row("Change log", str(config.change_log_path))
    console.print(table)


@app.command("list")
def list_servers(
    config_path: str = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", help="Show request details"),
):
    """List every server id known to the panel (read-only)."""
    config = _load_config(config_path)
    configure_run_log(None, verbose)

    console.print("Fetching VPS list...")
    try:
        with CarryOverEngine(config) as engine:
            snapshots = engine.list_roster()
    except PanelError as e:
        console.print(f"[red]Error:[/] {e.describe()}")
        sys.exit(_error_to_exit_code(e))

    table = Table(title=f"{len(snapshots)} VPS")
    for column in ("ID", "Name", "Hostname", "Limit", "Used", "Plan"):
        table.add_column(column)
    for snapshot in snapshots:
        table.add_row(
            snapshot.vps_id,
            snapshot.name or "",
            snapshot.hostname or "",
            "unlimited" if snapshot.bandwidth_limit == 0 else str(snapshot.bandwidth_limit),
            str(snapshot.used_bandwidth),
            str(snapshot.plan_id),
        )
    console.print(table)
    sys.exit(EXIT_CODE_SUCCESS)


@app.command()
def run(
    vps: Optional[str] = typer.Option(
        None,
        "--vps",
        help="Reset a single server instead of all"
    ),
    config_path: str = CONFIG_OPTION,
    jobs: Optional[int] = typer.Option(
        None,
        "--jobs",
        "-j",
        min=1,
        help="Override the number of parallel workers"
    ),
    over_usage: Optional[str] = typer.Option(
        None,
        "--over-usage",
        help="Override over-usage policy: clamp, allow-negative or skip"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log request details"),
):
    """
    Reset bandwidth usage and carry unused quota into the next cycle.

    Suitable for scheduled execution: output is appended to the run log and
    the exit code reports the outcome.
    """
    policy = None
    if over_usage is not None:
        try:
            policy = parse_over_usage_policy(over_usage)
        except ValueError as e:
            console.print(f"[red]Invalid option:[/] {str(e)}")
            sys.exit(EXIT_CODE_CONFIG)

    config = _load_config(config_path, parallel_jobs=jobs, over_usage_policy=policy)

    try:
        logger = configure_run_log(config.run_log_path, verbose)
    except OSError as e:
        console.print(f"[red]Cannot open run log:[/] {str(e)}")
        sys.exit(EXIT_CODE_CONFIG)
    write_run_header(logger, f"VPS {vps}" if vps else "all")

    try:
        with CarryOverEngine(config) as engine:
            result = engine.run_one(vps) if vps else engine.run_all()
    except PanelError as e:
        logger.error("Run aborted: %s", e.describe())
        console.print(f"[red]Failed:[/] {e.describe()}")
        sys.exit(_error_to_exit_code(e))

    _display_run_result(result)
    sys.exit(_result_to_exit_code(result))


def _mask_api_base(config: PanelConfig) -> str:
    """Hide the API password in the displayed base URL."""
    base = config.resolved_api_base
    prefix, marker, rest = base.partition("adminapipass=")
    if not marker:
        return base
    _, amp, tail = rest.partition("&")
    return f"{prefix}{marker}****{amp}{tail}"


def _display_run_result(result: RunResult):
    """Display the final status line of a run."""
    if result.processed == 0:
        console.print("[dim]No VPS to process.[/]")
        return

    colour = "green" if result.success else "red"
    mark = "✓" if result.success else "✗"
    console.print(
        f"[{colour}]{mark}[/] Processed {result.processed} VPS: "
        f"{result.changed} changed, {result.reset_only} reset only, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    for outcome in result.outcomes:
        if outcome.failed:
            console.print(f"  [red]VPS {outcome.vps_id}[/] failed at {outcome.step or 'unknown step'}")


if __name__ == "__main__":
    app()

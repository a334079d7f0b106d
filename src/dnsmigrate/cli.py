"""Command-line interface for the DNS migration orchestrator."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .collaborators.simulated import SimulatedNetwork
from .config import OrchestratorConfig, load_config
from .core.loader import build_topology, load_declaration
from .execution.runner import Collaborators, MigrationRunner, build_state_machine
from .models.declaration import TopologyDeclaration
from .utils.exceptions import MigrationError, NoReachableAuthority, ValidationFailed

app = typer.Typer(
    name="dnsmigrate",
    help="DNS authority migration orchestrator - staged, validated, resumable",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")

DECLARATION_ARG = typer.Argument(..., help="Topology declaration (YAML)", exists=True)
CONFIG_OPT = typer.Option(None, "--config", "-c", help="Configuration file")
SIMULATE_OPT = typer.Option(
    False, "--simulate", help="Rehearse against an in-memory network (nothing is persisted)"
)
ENDPOINT_OPT = typer.Option(None, "--endpoint", help="Control-plane API base URL")
LOG_LEVEL_OPT = typer.Option(
    None, "--log-level", help="Log verbosity: TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR"
)
LOG_FILTER_OPT = typer.Option(
    None,
    "--log-filter",
    help="Filter logs by component (comma-separated, e.g., 'forwarding,cutover')",
)


def _setup(
    config_file: Path | None,
    endpoint: str | None = None,
    log_level: str | None = None,
    log_filter: str | None = None,
) -> OrchestratorConfig:
    from .observability import configure_logging

    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    if endpoint:
        config.collaborator.base_url = endpoint
    configure_logging(
        level=log_level or config.logging.level,
        json_logs=config.logging.format == "json",
        log_file=config.logging.file,
        log_filter=log_filter,
    )
    return config


def _declaration(path: Path) -> TopologyDeclaration:
    try:
        return load_declaration(path)
    except MigrationError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e


def _print_error(error: Exception) -> None:
    console.print(f"\n[bold red]ERROR:[/bold red] {error.__class__.__name__}")
    if isinstance(error, NoReachableAuthority):
        for diagnostic in error.diagnostics:
            console.print(f"  [red]-[/red] {diagnostic}")
    elif isinstance(error, ValidationFailed):
        console.print(f"  Suite: {error.phase}")
        for failure in error.failures:
            console.print(f"  [red]-[/red] {failure}")
    else:
        console.print(f"  {error}")


def _run(factory: Callable[[], Awaitable[T]]) -> T:
    try:
        return asyncio.run(factory())
    except (MigrationError, ValueError) as e:
        _print_error(e)
        raise typer.Exit(code=1) from e


@app.command()
def check(
    declaration_file: Path = DECLARATION_ARG,
) -> None:
    """
    Validate a topology declaration without touching anything.

    Examples:
        dnsmigrate check examples/hub_spoke.yaml
    """
    declaration = _declaration(declaration_file)
    try:
        topology = build_topology(declaration)
    except MigrationError as e:
        _print_error(e)
        raise typer.Exit(code=1) from e

    table = Table(title=f"Topology {topology.name}", show_header=True, header_style="bold cyan")
    table.add_column("Segment", style="cyan")
    table.add_column("Range")
    table.add_column("Container")
    table.add_column("Servers")
    table.add_column("Default resolver")
    for segment_id in sorted(topology.segments):
        segment = topology.segments[segment_id]
        table.add_row(
            segment.id,
            segment.address_range,
            segment.container,
            ", ".join(sorted(segment.servers)),
            segment.default_resolver or "-",
        )
    console.print(table)

    for name in sorted(topology.zones):
        zone = topology.zones[name]
        visibility = "private" if zone.private else "public"
        console.print(
            f"  zone [cyan]{name}[/cyan] ({visibility}) authority {zone.authority}, "
            f"{len(topology.zone_records(name))} record(s)"
        )
    console.print(
        f"\n[green]OK:[/green] {len(declaration.links)} link(s), "
        f"{len(declaration.migrations)} planned migration(s), "
        f"snapshot {topology.snapshot_hash[:12]}"
    )


@app.command()
def plan(
    declaration_file: Path = DECLARATION_ARG,
    config_file: Path | None = CONFIG_OPT,
) -> None:
    """
    Show the forwarding rules for the committed state and the next phase.

    Reads the phase log; makes no collaborator calls.

    Examples:
        dnsmigrate plan examples/hub_spoke.yaml
    """
    from .persistence import PhaseLog

    config = _setup(config_file, log_level="WARNING")
    declaration = _declaration(declaration_file)
    try:
        machine = build_state_machine(
            declaration,
            Collaborators.from_network(SimulatedNetwork()),
            config,
            phase_log=PhaseLog(config.state.phase_log),
        )
    except MigrationError as e:
        _print_error(e)
        raise typer.Exit(code=1) from e

    MigrationRunner(config, console).print_rules(machine.compute_rules())
    console.print(f"Next phase: [cyan]{machine.next_phase() or '-'}[/cyan]")


@app.command()
def advance(
    declaration_file: Path = DECLARATION_ARG,
    phase: str | None = typer.Option(
        None, "--phase", "-p", help="Phase to run (default: the next one)"
    ),
    config_file: Path | None = CONFIG_OPT,
    simulate: bool = SIMULATE_OPT,
    endpoint: str | None = ENDPOINT_OPT,
    log_level: str | None = LOG_LEVEL_OPT,
    log_filter: str | None = LOG_FILTER_OPT,
) -> None:
    """
    Run exactly one phase transition.

    Examples:
        dnsmigrate advance topology.yaml --endpoint https://cp.example/api
        dnsmigrate advance topology.yaml --phase ZoneMigration:blob.example
    """
    config = _setup(config_file, endpoint, log_level, log_filter)
    declaration = _declaration(declaration_file)
    runner = MigrationRunner(config, console, simulate=simulate)

    record = _run(lambda: runner.execute(declaration, lambda m: m.advance(phase)))
    if record is None:
        console.print("[green]Nothing left to do.[/green]")
        return
    runner.print_records([record], title="Committed")


@app.command()
def run(
    declaration_file: Path = DECLARATION_ARG,
    config_file: Path | None = CONFIG_OPT,
    simulate: bool = SIMULATE_OPT,
    endpoint: str | None = ENDPOINT_OPT,
    log_level: str | None = LOG_LEVEL_OPT,
    log_filter: str | None = LOG_FILTER_OPT,
) -> None:
    """
    Advance phase by phase until Complete.

    Examples:
        dnsmigrate run topology.yaml --simulate
        dnsmigrate run topology.yaml --config prod.yaml
    """
    config = _setup(config_file, endpoint, log_level, log_filter)
    declaration = _declaration(declaration_file)
    runner = MigrationRunner(config, console, simulate=simulate)

    console.print(
        Panel.fit(
            f"[bold blue]DNS migration[/bold blue]\n\n"
            f"Topology: [cyan]{declaration.name}[/cyan]\n"
            f"Mode: [yellow]{'SIMULATED' if simulate else 'LIVE'}[/yellow]\n"
            f"Planned migrations: {len(declaration.migrations)}",
            border_style="blue",
        )
    )
    records = _run(lambda: runner.execute(declaration, lambda m: m.run()))
    runner.print_records(records, title="Committed")
    console.print("\n[green]OK:[/green] migration complete")


@app.command()
def revert(
    declaration_file: Path = DECLARATION_ARG,
    zone: str = typer.Argument(..., help="Zone to move back to its previous authority"),
    config_file: Path | None = CONFIG_OPT,
    endpoint: str | None = ENDPOINT_OPT,
    log_level: str | None = LOG_LEVEL_OPT,
) -> None:
    """
    Revert a committed zone migration (recorded as RevertZone:<zone>).

    Examples:
        dnsmigrate revert topology.yaml blob.example
    """
    config = _setup(config_file, endpoint, log_level)
    declaration = _declaration(declaration_file)
    runner = MigrationRunner(config, console)

    record = _run(lambda: runner.execute(declaration, lambda m: m.revert_zone(zone)))
    if record is not None:
        runner.print_records([record], title="Committed")


@app.command("retire-legacy")
def retire_legacy(
    declaration_file: Path = DECLARATION_ARG,
    zone: str = typer.Argument(..., help="Zone whose previous authorities are removed"),
    config_file: Path | None = CONFIG_OPT,
    endpoint: str | None = ENDPOINT_OPT,
    log_level: str | None = LOG_LEVEL_OPT,
) -> None:
    """
    End the migration window of a zone: stop using its legacy authority.

    Refused while any server still reaches the zone only through it.

    Examples:
        dnsmigrate retire-legacy topology.yaml blob.example
    """
    config = _setup(config_file, endpoint, log_level)
    declaration = _declaration(declaration_file)
    runner = MigrationRunner(config, console)

    record = _run(lambda: runner.execute(declaration, lambda m: m.retire_legacy(zone)))
    if record is not None:
        runner.print_records([record], title="Committed")


@app.command()
def teardown(
    declaration_file: Path = DECLARATION_ARG,
    config_file: Path | None = CONFIG_OPT,
    endpoint: str | None = ENDPOINT_OPT,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    log_level: str | None = LOG_LEVEL_OPT,
) -> None:
    """
    Delete every provisioned resource. Terminal.

    Examples:
        dnsmigrate teardown topology.yaml --yes
    """
    config = _setup(config_file, endpoint, log_level)
    declaration = _declaration(declaration_file)
    if not yes and not typer.confirm(f"Delete all resources of {declaration.name}?"):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit()

    runner = MigrationRunner(config, console)
    record = _run(lambda: runner.execute(declaration, lambda m: m.teardown()))
    if record is not None:
        runner.print_records([record], title="Committed")


@app.command()
def history(
    config_file: Path | None = CONFIG_OPT,
    limit: int = typer.Option(20, help="Number of recent records to show"),
) -> None:
    """
    List phase log records, failed attempts included.

    Examples:
        dnsmigrate history
        dnsmigrate history --limit 50
    """
    from .persistence import PhaseLog

    config = _setup(config_file, log_level="WARNING")
    path = Path(config.state.phase_log)
    if not path.exists():
        console.print("[yellow]WARNING: No phase log found[/yellow]")
        console.print(f"Path: {path}")
        return

    records = PhaseLog(path).records()
    if not records:
        console.print("[yellow]Phase log is empty[/yellow]")
        return
    runner = MigrationRunner(config, console)
    runner.print_records(records[-limit:], title=f"Phase log ({path})")


@app.command()
def report(
    declaration_file: Path = DECLARATION_ARG,
    output: Path = typer.Option(Path("migration-report.json"), "--output", "-o"),
    config_file: Path | None = CONFIG_OPT,
) -> None:
    """
    Write a JSON report of the phase log and current zone authorities.

    Examples:
        dnsmigrate report topology.yaml -o reports/migration.json
    """
    from .observability import ReportGenerator, get_global_collector
    from .persistence import PhaseLog

    config = _setup(config_file, log_level="WARNING")
    declaration = _declaration(declaration_file)
    phase_log = PhaseLog(config.state.phase_log)
    try:
        machine = build_state_machine(
            declaration,
            Collaborators.from_network(SimulatedNetwork()),
            config,
            phase_log=phase_log,
        )
    except MigrationError as e:
        _print_error(e)
        raise typer.Exit(code=1) from e

    generator = ReportGenerator(phase_log)
    migration_report = generator.generate_report(
        declaration.name,
        zones=machine.zone_authorities(),
        metrics=get_global_collector().get_summary(),
    )
    generator.write_json_report(migration_report, output)
    console.print(f"[green]OK:[/green] report written to {output} ({migration_report.status})")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel.fit(
            "[bold]dnsmigrate[/bold]\n\n"
            f"Version: [cyan]{__version__}[/cyan]\n"
            "Python: 3.11+\n\n"
            "[bold]Phases:[/bold]\n"
            "Infrastructure -> Connectivity -> DnsConfig -> Cutover\n"
            "-> ZoneMigration:<zone> -> Complete",
            title="About",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()

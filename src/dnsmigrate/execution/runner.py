"""
Migration Runner - assembles an orchestrator and runs commands against it.

It handles:
1. Collaborator selection (simulated network or control-plane API)
2. Phase log and lease setup
3. Model rebuild and replay of the phase log
4. Console output for the CLI
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from rich.console import Console
from rich.table import Table

from ..collaborators.http import HttpControlPlane
from ..collaborators.protocols import DnsAdmin, LinkProbe, Provisioner, Resolver
from ..collaborators.simulated import SimulatedNetwork
from ..config import OrchestratorConfig
from ..core.connectivity import ConnectivityTracker
from ..core.loader import build_topology
from ..models.declaration import TopologyDeclaration
from ..models.phases import PhaseRecord
from ..models.rules import RuleComputation
from ..persistence.phase_log import PhaseLog
from ..utils.locking import KeyedLock, PhaseLease
from .calls import CallPolicy
from .cutover import CutoverController
from .provisioning import InfrastructureBuilder
from .state_machine import PhaseStateMachine
from .validator import Validator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class Collaborators:
    """The four external collaborators the orchestrator consumes."""

    provisioner: Provisioner
    probe: LinkProbe
    dns_admin: DnsAdmin
    resolver: Resolver

    @classmethod
    def from_network(cls, network: Any) -> "Collaborators":
        """Use one object that implements all four protocols."""
        return cls(provisioner=network, probe=network, dns_admin=network, resolver=network)


def build_state_machine(
    declaration: TopologyDeclaration,
    collaborators: Collaborators,
    config: OrchestratorConfig | None = None,
    phase_log: PhaseLog | None = None,
    lease: PhaseLease | None = None,
    resume: bool = True,
) -> PhaseStateMachine:
    """
    Build models from a declaration and wire a PhaseStateMachine.

    Args:
        declaration: Validated topology declaration
        collaborators: Collaborator implementations
        config: Orchestrator configuration (defaults if omitted)
        phase_log: Phase log (default: the configured file)
        lease: Cross-process lease (default: none)
        resume: Replay the phase log onto the rebuilt models

    Returns:
        Ready PhaseStateMachine
    """
    config = config or OrchestratorConfig()
    topology = build_topology(declaration)
    tracker = ConnectivityTracker(collaborators.probe, probe_timeout=config.probe.timeout)

    policy = CallPolicy(config.retry, timeout=config.collaborator.call_timeout)
    locks = KeyedLock()
    concurrency = config.collaborator.max_concurrency
    builder = InfrastructureBuilder(collaborators.provisioner, policy, locks, concurrency)
    controller = CutoverController(
        collaborators.dns_admin,
        Validator(collaborators.resolver, policy),
        policy,
        locks,
        concurrency,
    )

    machine = PhaseStateMachine(
        topology,
        tracker,
        phase_log if phase_log is not None else PhaseLog(config.state.phase_log),
        builder,
        controller,
        links=declaration.link_pairs(),
        migrations=[(m.zone, m.to) for m in declaration.migrations],
        probe_config=config.probe,
        lease=lease,
    )
    if resume:
        machine.resume()
    return machine


@asynccontextmanager
async def open_collaborators(
    config: OrchestratorConfig, simulate: bool = False
) -> AsyncIterator[Collaborators]:
    """
    Yield collaborators for one command.

    Raises:
        ValueError: Neither simulation nor a control-plane endpoint is configured
    """
    if simulate:
        yield Collaborators.from_network(SimulatedNetwork())
        return
    if not config.collaborator.base_url:
        raise ValueError("No control-plane endpoint configured (use --endpoint or --simulate)")
    async with HttpControlPlane(config.collaborator) as plane:
        yield Collaborators.from_network(plane)


class MigrationRunner:
    """
    Runs orchestrator commands for the CLI.

    A simulated run keeps its phase log in memory and takes no lease: the
    simulated network does not outlive the process, so neither may its history.
    """

    def __init__(
        self, config: OrchestratorConfig, console: Console, simulate: bool = False
    ) -> None:
        """
        Initialize MigrationRunner.

        Args:
            config: Orchestrator configuration
            console: Rich console for output
            simulate: Rehearse against the in-memory network
        """
        self.config = config
        self.console = console
        self.simulate = simulate

    async def execute(
        self,
        declaration: TopologyDeclaration,
        action: Callable[[PhaseStateMachine], Awaitable[T]],
    ) -> T:
        """Assemble a state machine, run `action` on it, and release resources."""
        lease = None
        if not self.simulate:
            lease = PhaseLease(self.config.lease.directory, self.config.lease.ttl_seconds)
        phase_log = PhaseLog(None if self.simulate else self.config.state.phase_log)
        try:
            async with open_collaborators(self.config, self.simulate) as collaborators:
                machine = build_state_machine(
                    declaration, collaborators, self.config, phase_log=phase_log, lease=lease
                )
                return await action(machine)
        finally:
            if lease is not None:
                lease.close()

    def print_records(self, records: Sequence[PhaseRecord], title: str = "Phases") -> None:
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Phase", style="cyan")
        table.add_column("Timestamp")
        table.add_column("Snapshot")
        table.add_column("Result")
        table.add_column("Diagnostics")

        for record in records:
            result = "[green]PASS[/green]" if record.passed else "[red]FAIL[/red]"
            table.add_row(
                str(record.sequence),
                record.phase,
                record.timestamp,
                record.snapshot_hash[:12],
                result,
                "\n".join(record.diagnostics),
            )
        self.console.print(table)

    def print_rules(self, computation: RuleComputation) -> None:
        table = Table(title="Forwarding rules", show_header=True, header_style="bold cyan")
        table.add_column("Server", style="cyan")
        table.add_column("Zone")
        table.add_column("Target")
        table.add_column("Address")
        table.add_column("Selection")
        for rule in computation.rule_set.rules:
            table.add_row(
                rule.holder, rule.zone, rule.target, rule.target_address, rule.selection.value
            )
        self.console.print(table)

        if computation.diagnostics:
            self.console.print("\n[bold red]No reachable target:[/bold red]")
            for diagnostic in computation.diagnostics:
                self.console.print(f"  [red]-[/red] {diagnostic}")
        else:
            self.console.print(f"\n[green]OK:[/green] digest {computation.rule_set.digest[:16]}")

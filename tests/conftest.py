"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
- Declaration fixtures: two-segment and hub/spoke topologies
- Configuration fixtures: zero-backoff retry and probe policies
- Collaborator fixtures: the simulated network
- Orchestrator fixtures: a factory for wired PhaseStateMachines
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from dnsmigrate.collaborators.simulated import SimulatedNetwork
from dnsmigrate.config import (
    CollaboratorConfig,
    LeaseConfig,
    OrchestratorConfig,
    ProbeConfig,
    RetryConfig,
    StateConfig,
)
from dnsmigrate.core.loader import build_topology, load_declaration, parse_declaration
from dnsmigrate.core.topology import TopologyModel
from dnsmigrate.execution.runner import Collaborators, build_state_machine
from dnsmigrate.execution.state_machine import PhaseStateMachine
from dnsmigrate.models.declaration import TopologyDeclaration
from dnsmigrate.observability.metrics import reset_global_collector
from dnsmigrate.persistence.phase_log import PhaseLog
from dnsmigrate.utils.locking import PhaseLease

EXAMPLES_DIR = Path(__file__).parent.parent / "examples"


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Give every test its own metrics collector."""
    yield reset_global_collector()
    reset_global_collector()


# =============================================================================
# Declaration Fixtures
# =============================================================================


def _two_segment_data() -> dict[str, Any]:
    """On-prem and hub, each authoritative for its own private zone. No links."""
    return {
        "name": "two-segment",
        "segments": [
            {"id": "onprem", "address_range": "10.0.0.0/24", "default_resolver": "onprem-dns"},
            {"id": "hub", "address_range": "10.1.0.0/24", "default_resolver": "hub-dns"},
        ],
        "servers": [
            {"id": "onprem-dns", "segment": "onprem", "address": "10.0.0.4"},
            {"id": "hub-dns", "segment": "hub", "address": "10.1.0.4"},
        ],
        "zones": [
            {
                "name": "onprem.pvt",
                "authority": "onprem-dns",
                "records": [{"name": "vm1.onprem.pvt", "address": "10.0.0.10"}],
            },
            {
                "name": "hub.pvt",
                "authority": "hub-dns",
                "records": [{"name": "vm1.hub.pvt", "address": "10.1.0.10"}],
            },
        ],
    }


@pytest.fixture
def two_segment_data() -> dict[str, Any]:
    """A fresh copy of the two-segment declaration mapping."""
    return _two_segment_data()


@pytest.fixture
def two_segment_declaration(two_segment_data: dict[str, Any]) -> TopologyDeclaration:
    return parse_declaration(two_segment_data)


@pytest.fixture
def hub_spoke_path() -> Path:
    """Path to the example hub/spoke declaration."""
    return EXAMPLES_DIR / "hub_spoke.yaml"


@pytest.fixture
def hub_spoke_declaration(hub_spoke_path: Path) -> TopologyDeclaration:
    return load_declaration(hub_spoke_path)


@pytest.fixture
def hub_spoke_topology(hub_spoke_declaration: TopologyDeclaration) -> TopologyModel:
    return build_topology(hub_spoke_declaration)


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def fast_config(tmp_path: Path) -> OrchestratorConfig:
    """Configuration with zero backoff and state under tmp_path."""
    return OrchestratorConfig(
        retry=RetryConfig(backoff_multiplier=0, backoff_min=0, backoff_max=0),
        probe=ProbeConfig(backoff_multiplier=0, backoff_min=0, backoff_max=0, timeout=1.0),
        collaborator=CollaboratorConfig(call_timeout=5.0),
        lease=LeaseConfig(directory=str(tmp_path / "lease")),
        state=StateConfig(phase_log=str(tmp_path / "phases.jsonl")),
    )


# =============================================================================
# Collaborator and Orchestrator Fixtures
# =============================================================================


@pytest.fixture
def network() -> SimulatedNetwork:
    return SimulatedNetwork()


@pytest.fixture
def make_machine(
    fast_config: OrchestratorConfig,
) -> Callable[..., PhaseStateMachine]:
    """
    Factory for state machines wired to a simulated network.

    Usage:
        machine = make_machine(declaration, network)
        machine = make_machine(declaration, network, phase_log=log, lease=lease)
    """

    def _make(
        declaration: TopologyDeclaration,
        network: SimulatedNetwork,
        phase_log: PhaseLog | None = None,
        lease: PhaseLease | None = None,
        holder: str | None = None,
    ) -> PhaseStateMachine:
        machine = build_state_machine(
            declaration,
            Collaborators.from_network(network),
            fast_config,
            phase_log=phase_log if phase_log is not None else PhaseLog(None),
            lease=lease,
        )
        if holder is not None:
            machine.holder = holder
        return machine

    return _make

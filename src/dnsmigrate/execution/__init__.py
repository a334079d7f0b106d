"""Phase execution: state machine, cutover, provisioning and validation."""

from .calls import CallPolicy, confirm_link_with_retry
from .cancellation import CancellationScope
from .cutover import CutoverController, CutoverPlan
from .provisioning import InfrastructureBuilder
from .runner import Collaborators, MigrationRunner, build_state_machine, open_collaborators
from .state_machine import PhaseStateMachine
from .validator import Validator, build_suite

__all__ = [
    "CallPolicy",
    "confirm_link_with_retry",
    "CancellationScope",
    "CutoverController",
    "CutoverPlan",
    "InfrastructureBuilder",
    "Collaborators",
    "MigrationRunner",
    "build_state_machine",
    "open_collaborators",
    "PhaseStateMachine",
    "Validator",
    "build_suite",
]

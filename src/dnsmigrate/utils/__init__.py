"""Utility functions and exceptions."""

from .exceptions import (
    ApplyRejected,
    CancellationRefused,
    CollaboratorError,
    DeclarationError,
    LeaseHeldError,
    LinkNotReachable,
    MigrationError,
    NoReachableAuthority,
    PhaseCancelled,
    PhaseOrderError,
    TopologyInvariantViolation,
    TransientCollaboratorError,
    ValidationFailed,
)

__all__ = [
    "MigrationError",
    "DeclarationError",
    "TopologyInvariantViolation",
    "LinkNotReachable",
    "NoReachableAuthority",
    "ValidationFailed",
    "PhaseOrderError",
    "LeaseHeldError",
    "PhaseCancelled",
    "CancellationRefused",
    "CollaboratorError",
    "TransientCollaboratorError",
    "ApplyRejected",
]

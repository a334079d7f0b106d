"""Custom exceptions for the DNS migration orchestrator.

Exception Hierarchy:
-------------------
MigrationError (base)
├── DeclarationError              # Malformed topology declaration file
├── TopologyInvariantViolation    # Caller bug: two authorities, unknown segment, ...
├── LinkNotReachable              # Reachability probe failed (retryable)
├── NoReachableAuthority          # Forwarding rules cannot be computed (fail closed)
├── ValidationFailed              # Resolution probes did not match expectations
├── PhaseOrderError               # Phase requested out of order / history conflict
├── LeaseHeldError                # Another orchestrator holds the topology lease
├── PhaseCancelled                # Transition cancelled before pushes started
├── CancellationRefused           # Cancel requested after pushes started
└── CollaboratorError (base for external collaborator failures)
    ├── TransientCollaboratorError  # Timeout, 5xx, rate limit (retried)
    └── ApplyRejected               # Configuration rejected (never retried)

Usage Guidelines:
----------------
1. Only TransientCollaboratorError and LinkNotReachable are retried, and only by
   the call-scoped retry policies (see execution/calls.py, core/connectivity.py).
2. Everything else propagates to the phase state machine, which records a failed
   audit entry and leaves the prior committed phase authoritative.
3. Every error carries the entity it is about (zone, segment, server, edge), so the
   operator is never left with an undifferentiated "deployment failed".
"""

from typing import Any


class MigrationError(Exception):
    """Base exception for all orchestrator errors."""

    pass


class DeclarationError(MigrationError):
    """Raised when a topology declaration cannot be loaded or parsed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.args[0]}"
        return str(self.args[0]) if self.args else "Invalid declaration"


class TopologyInvariantViolation(MigrationError):
    """
    Raised when a topology mutation would break a model invariant.

    This is always a caller bug (two authorities for one zone, a server outside
    its segment's address range, ...). The model is left untouched and the
    error is never retried.
    """

    def __init__(self, message: str, entity: str | None = None) -> None:
        """
        Initialize TopologyInvariantViolation.

        Args:
            message: Error message.
            entity: Identifier of the offending zone, segment, server or binding.
        """
        super().__init__(message)
        self.entity = entity


class LinkNotReachable(MigrationError):
    """Raised when a reachability probe between two segments fails."""

    def __init__(self, segment_a: str, segment_b: str, direction: str | None = None) -> None:
        """
        Initialize LinkNotReachable.

        Args:
            segment_a: First segment of the edge.
            segment_b: Second segment of the edge.
            direction: "a->b" style label of the direction that failed, if known.
        """
        detail = f" ({direction} failed)" if direction else ""
        super().__init__(f"Link {segment_a} <-> {segment_b} not reachable{detail}")
        self.segment_a = segment_a
        self.segment_b = segment_b
        self.direction = direction


class NoReachableAuthority(MigrationError):
    """
    Raised when no reachable forwarding target exists for one or more pairs.

    The rule computation fails closed: no partial rule set is ever applied.
    `diagnostics` lists every offending (holder, subject) pair so the operator
    can fix declared connectivity instead of guessing.
    """

    def __init__(self, diagnostics: list[Any]) -> None:
        """
        Initialize NoReachableAuthority.

        Args:
            diagnostics: Diagnostic entries (see models.rules.Diagnostic).
        """
        pairs = ", ".join(str(d) for d in diagnostics)
        super().__init__(f"No reachable authority for {len(diagnostics)} pair(s): {pairs}")
        self.diagnostics = list(diagnostics)

    @property
    def pairs(self) -> set[tuple[str, str]]:
        """Offending (holder, subject) pairs."""
        return {(d.holder, d.subject) for d in self.diagnostics}


class ValidationFailed(MigrationError):
    """Raised when one or more resolution probes do not match expectations."""

    def __init__(self, phase: str, failures: list[Any]) -> None:
        """
        Initialize ValidationFailed.

        Args:
            phase: Phase name whose validation suite failed.
            failures: Failing probe results (see models.validation.ProbeResult).
        """
        details = "; ".join(str(f) for f in failures)
        super().__init__(f"Validation failed for {phase}: {details}")
        self.phase = phase
        self.failures = list(failures)


class PhaseOrderError(MigrationError):
    """Raised when a phase is requested out of order or conflicts with history."""

    def __init__(self, phase: str, reason: str) -> None:
        super().__init__(f"Cannot run {phase}: {reason}")
        self.phase = phase
        self.reason = reason


class LeaseHeldError(MigrationError):
    """Raised when another orchestrator already drives the same topology."""

    def __init__(self, topology: str, holder: str | None) -> None:
        super().__init__(f"Topology '{topology}' is leased by {holder or 'another process'}")
        self.topology = topology
        self.holder = holder


class PhaseCancelled(MigrationError):
    """Raised when a transition is cancelled before configuration pushes began."""

    def __init__(self, phase: str) -> None:
        super().__init__(f"Transition to {phase} cancelled before apply")
        self.phase = phase


class CancellationRefused(MigrationError):
    """Raised when cancellation is requested after configuration pushes began."""

    def __init__(self, phase: str) -> None:
        super().__init__(
            f"Transition to {phase} is already pushing configuration and cannot be cancelled"
        )
        self.phase = phase


class CollaboratorError(MigrationError):
    """Base exception for failures reported by an external collaborator."""

    def __init__(self, operation: str, target: str, message: str) -> None:
        """
        Initialize CollaboratorError.

        Args:
            operation: Collaborator operation (e.g. "push_forwarding_rules").
            target: Entity the call was about (server, segment, resource name).
            message: Error details from the collaborator.
        """
        super().__init__(f"{operation}({target}): {message}")
        self.operation = operation
        self.target = target


class TransientCollaboratorError(CollaboratorError):
    """Timeout or temporary collaborator failure, eligible for retry."""

    pass


class ApplyRejected(CollaboratorError):
    """Collaborator rejected the configuration. Requires human correction."""

    pass

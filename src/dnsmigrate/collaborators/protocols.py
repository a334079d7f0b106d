"""Interfaces of the external collaborators consumed by the orchestrator.

The orchestrator never talks to a cloud platform directly. These four narrow
protocols are the whole contract; see simulated.py and http.py for adapters.

Error contract for every method:
- TransientCollaboratorError: temporary failure, the call may be retried
- ApplyRejected: the request itself is wrong, never retried
- Any method may block; callers bound it with a timeout (execution/calls.py)
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..models.resources import ResourceHandle, ResourceSpec
from ..models.rules import ForwardingRule
from ..models.topology import DnsServer, Record
from ..models.validation import Resolution


@runtime_checkable
class Provisioner(Protocol):
    """Declarative, convergent resource realization."""

    async def create_or_update(self, spec: ResourceSpec) -> ResourceHandle:
        """Create or converge a resource. Calling twice with one spec is safe."""
        ...

    async def delete(self, handle: ResourceHandle) -> None:
        ...


@runtime_checkable
class LinkProbe(Protocol):
    """Directional reachability check between two segments."""

    async def probe(self, segment_a: str, segment_b: str) -> bool:
        ...


@runtime_checkable
class DnsAdmin(Protocol):
    """Configuration pushes to DNS servers and segment resolver settings."""

    async def push_zone_file(self, server: DnsServer, zone: str, records: Sequence[Record]) -> None:
        """Install or replace the zone's data on a server."""
        ...

    async def push_forwarding_rules(
        self, server: DnsServer, rules: Sequence[ForwardingRule]
    ) -> None:
        """Replace the complete forwarding rule list of a server."""
        ...

    async def set_default_resolver(self, segment: str, server: DnsServer) -> None:
        """Point a segment's clients at a resolver."""
        ...


@runtime_checkable
class Resolver(Protocol):
    """Resolution probe client scoped to a segment."""

    async def resolve(self, segment: str, name: str) -> Resolution:
        ...

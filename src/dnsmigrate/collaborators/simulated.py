"""In-memory network that implements all four collaborators.

Used for rehearsals (`dnsmigrate run --simulate`) and by the test-suite. The
simulation is deliberately literal about the behaviours that caused trouble in
real deployments:

- Segments only reach each other through a provisioned link (no transit).
- A segment pointed at a resolver it cannot reach gets no answers.
- A forwarding rule for a zone takes precedence over locally held zone data
  of equal or lower specificity, which is how an old authority is demoted.
- Forwarded answers are never authoritative.

Fault injection hooks (`fail_probes`, `fail_next`, `reject`, `latency`) let
tests reproduce transient and permanent collaborator failures.
"""

import asyncio
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from ..constants import RESOURCE_DNS_SERVER, RESOURCE_LINK, UPSTREAM
from ..models.connectivity import edge_key
from ..models.resources import ResourceHandle, ResourceSpec
from ..models.rules import ForwardingRule
from ..models.topology import DnsServer, Record
from ..models.validation import Resolution
from ..utils.exceptions import ApplyRejected, TransientCollaboratorError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CallRecord:
    """One collaborator call as seen by the simulation."""

    operation: str
    target: str


class SimulatedNetwork:
    """Provisioner, LinkProbe, DnsAdmin and Resolver over shared in-memory state."""

    def __init__(self, public_records: dict[str, str] | None = None) -> None:
        self.public_records = dict(public_records or {})
        self.resources: dict[tuple[str, str], ResourceSpec] = {}
        self.peerings: set[tuple[str, str]] = set()
        self.server_segments: dict[str, str] = {}
        self.zone_files: dict[str, dict[str, list[Record]]] = {}
        self.forwarders: dict[str, list[ForwardingRule]] = {}
        self.default_resolvers: dict[str, str] = {}
        self.calls: list[CallRecord] = []

        self.latency = 0.0
        self._probe_failures = 0
        self._transient: Counter[str] = Counter()
        self._rejections: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_probes(self, times: int) -> None:
        """Make the next `times` probe calls report unreachable."""
        self._probe_failures = times

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of an operation raise a transient error."""
        self._transient[operation] += times

    def reject(self, operation: str, target: str) -> None:
        """Make every call of an operation for a target raise ApplyRejected."""
        self._rejections.add((operation, target))

    def peer(self, segment_a: str, segment_b: str) -> None:
        """Wire two segments together without going through the Provisioner."""
        self.peerings.add(edge_key(segment_a, segment_b))

    def calls_for(self, operation: str) -> list[CallRecord]:
        return [call for call in self.calls if call.operation == operation]

    async def _enter(self, operation: str, target: str) -> None:
        self.calls.append(CallRecord(operation, target))
        if self.latency:
            await asyncio.sleep(self.latency)
        if (operation, target) in self._rejections:
            raise ApplyRejected(operation, target, "rejected by simulated control plane")
        if self._transient[operation] > 0:
            self._transient[operation] -= 1
            raise TransientCollaboratorError(operation, target, "simulated transient failure")

    # ------------------------------------------------------------------
    # Provisioner
    # ------------------------------------------------------------------

    async def create_or_update(self, spec: ResourceSpec) -> ResourceHandle:
        await self._enter("create_or_update", f"{spec.kind}/{spec.name}")
        self.resources[(spec.kind, spec.name)] = spec
        if spec.kind == RESOURCE_DNS_SERVER:
            self.server_segments[spec.name] = spec.properties["segment"]
        elif spec.kind == RESOURCE_LINK:
            self.peer(spec.properties["a"], spec.properties["b"])
        return ResourceHandle(
            kind=spec.kind,
            name=spec.name,
            container=spec.container,
            resource_id=f"/containers/{spec.container}/{spec.kind}/{spec.name}",
        )

    async def delete(self, handle: ResourceHandle) -> None:
        await self._enter("delete", f"{handle.kind}/{handle.name}")
        spec = self.resources.pop((handle.kind, handle.name), None)
        if spec is not None and spec.kind == RESOURCE_LINK:
            self.peerings.discard(edge_key(spec.properties["a"], spec.properties["b"]))
        if spec is not None and spec.kind == RESOURCE_DNS_SERVER:
            self.server_segments.pop(spec.name, None)
            self.zone_files.pop(spec.name, None)
            self.forwarders.pop(spec.name, None)

    # ------------------------------------------------------------------
    # LinkProbe
    # ------------------------------------------------------------------

    async def probe(self, segment_a: str, segment_b: str) -> bool:
        await self._enter("probe", f"{segment_a}->{segment_b}")
        if self._probe_failures > 0:
            self._probe_failures -= 1
            return False
        return self._reachable(segment_a, segment_b)

    def _reachable(self, segment_a: str, segment_b: str) -> bool:
        return segment_a == segment_b or edge_key(segment_a, segment_b) in self.peerings

    # ------------------------------------------------------------------
    # DnsAdmin
    # ------------------------------------------------------------------

    async def push_zone_file(self, server: DnsServer, zone: str, records: Sequence[Record]) -> None:
        await self._enter("push_zone_file", f"{server.id}/{zone}")
        self.server_segments.setdefault(server.id, server.segment)
        self.zone_files.setdefault(server.id, {})[zone] = list(records)

    async def push_forwarding_rules(
        self, server: DnsServer, rules: Sequence[ForwardingRule]
    ) -> None:
        await self._enter("push_forwarding_rules", server.id)
        self.server_segments.setdefault(server.id, server.segment)
        self.forwarders[server.id] = list(rules)

    async def set_default_resolver(self, segment: str, server: DnsServer) -> None:
        await self._enter("set_default_resolver", segment)
        self.server_segments.setdefault(server.id, server.segment)
        self.default_resolvers[segment] = server.id

    # ------------------------------------------------------------------
    # Resolver
    # ------------------------------------------------------------------

    async def resolve(self, segment: str, name: str) -> Resolution:
        await self._enter("resolve", f"{segment}/{name}")
        server_id = self.default_resolvers.get(segment)
        if server_id is None:
            return Resolution(address=None, authoritative=False)
        if not self._reachable(segment, self.server_segments.get(server_id, "")):
            return Resolution(address=None, authoritative=False)
        return self._query(server_id, name, set())

    def _query(self, server_id: str, name: str, visited: set[str]) -> Resolution:
        if server_id in visited:
            logger.warning("Forwarding loop", server=server_id, name=name)
            return Resolution(address=None, authoritative=False)
        visited.add(server_id)

        zones = self.zone_files.get(server_id, {})
        local_zone = _longest_match(name, zones)
        rules = {rule.zone: rule for rule in self.forwarders.get(server_id, [])}
        rule_zone = _longest_match(name, rules)

        if rule_zone is not None and (local_zone is None or len(rule_zone) >= len(local_zone)):
            rule = rules[rule_zone]
            if rule.target == UPSTREAM:
                return Resolution(address=self.public_records.get(name), authoritative=False)
            source = self.server_segments.get(server_id, "")
            target = self.server_segments.get(rule.target, "")
            if not self._reachable(source, target):
                return Resolution(address=None, authoritative=False)
            answer = self._query(rule.target, name, visited)
            return Resolution(address=answer.address, authoritative=False)

        if local_zone is not None:
            for record in zones[local_zone]:
                if record.name == name:
                    return Resolution(address=record.address, authoritative=True)
            return Resolution(address=None, authoritative=True)

        return Resolution(address=None, authoritative=False)


def _longest_match(name: str, zones: dict) -> str | None:
    matches = [z for z in zones if name == z or name.endswith(f".{z}")]
    return max(matches, key=len) if matches else None

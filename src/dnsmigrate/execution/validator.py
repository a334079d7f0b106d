"""Validator - resolution probes against the live topology.

A validation suite is a fixed list of ProbeExpectations derived from the
Topology Model when a phase is entered. Every expectation is probed and
reported with what was actually observed; a collaborator error on one probe
fails that probe only.
"""

import asyncio
from collections.abc import Iterable, Sequence

import structlog

from ..collaborators.protocols import Resolver
from ..core.topology import TopologyModel
from ..models.validation import ProbeExpectation, ProbeResult, Resolution, ValidationReport
from ..utils.exceptions import CollaboratorError
from .calls import CallPolicy

logger = structlog.get_logger(__name__)


def build_suite(
    topology: TopologyModel, zones: Iterable[str] | None = None
) -> list[ProbeExpectation]:
    """
    Derive the validation suite from the committed topology.

    One expectation per (segment with a default resolver, zone with a probe
    name). The answer must come from the zone's committed authority and is
    authoritative only when the segment's resolver is that authority. A
    resolver that cannot forward is only probed for the zones it serves.

    Args:
        topology: Model to derive expectations from
        zones: Restrict the suite to these zones (default: all)
    """
    wanted = sorted(topology.zones) if zones is None else sorted(set(zones))
    suite = []
    for segment_id in sorted(topology.segments):
        resolver_id = topology.segments[segment_id].default_resolver
        if resolver_id is None:
            continue
        resolver = topology.servers[resolver_id]
        for zone_name in wanted:
            zone = topology.zones[zone_name]
            if not resolver.forwarder and zone.authority != resolver.id:
                continue
            name = topology.probe_name(zone_name)
            record = topology.lookup(name) if name else None
            if record is None:
                continue
            suite.append(
                ProbeExpectation(
                    segment=segment_id,
                    name=record.name,
                    expected_address=record.address,
                    expected_authoritative=resolver.id == zone.authority,
                )
            )
    return suite


class Validator:
    """Run resolution probes through the Resolver collaborator."""

    def __init__(self, resolver: Resolver, policy: CallPolicy | None = None) -> None:
        self.resolver = resolver
        self.policy = policy or CallPolicy()

    async def validate(self, segment: str, name: str) -> Resolution:
        """Resolve `name` as seen from `segment`."""
        return await self.policy.call(
            "resolve", f"{segment}/{name}", lambda: self.resolver.resolve(segment, name)
        )

    async def _probe(self, expectation: ProbeExpectation) -> ProbeResult:
        try:
            actual = await self.validate(expectation.segment, expectation.name)
        except CollaboratorError as e:
            return ProbeResult(expectation=expectation, actual=None, error=str(e))
        return ProbeResult(expectation=expectation, actual=actual)

    async def run(self, suite: Sequence[ProbeExpectation], label: str) -> ValidationReport:
        """
        Probe every expectation of a suite.

        Returns:
            ValidationReport; the caller decides whether failures are fatal
        """
        results = await asyncio.gather(*(self._probe(e) for e in suite))
        report = ValidationReport(label=label, results=list(results))
        for failure in report.failures:
            logger.warning("Probe mismatch", suite=label, result=str(failure))
        logger.info("Validation finished", **report.summary())
        return report

"""Connectivity Tracker - which segment pairs have a usable data path.

Edges move Planned -> Established -> Verified. Only a successful probe in both
directions verifies an edge. `is_reachable` is a pure query and never probes:
probes cost time and touch the network, so the caller decides when to run them.
"""

import asyncio

import structlog

from ..collaborators.protocols import LinkProbe
from ..models.connectivity import ConnectivityEdge, EdgeStatus, edge_key
from ..observability.metrics import get_global_collector
from ..utils.exceptions import (
    LinkNotReachable,
    TopologyInvariantViolation,
    TransientCollaboratorError,
)

logger = structlog.get_logger(__name__)


class ConnectivityTracker:
    """Record of declared links and their confirmation state."""

    def __init__(self, probe: LinkProbe | None = None, probe_timeout: float | None = None) -> None:
        """
        Initialize ConnectivityTracker.

        Args:
            probe: Reachability probe used by confirm_link
            probe_timeout: Seconds before a single probe is treated as failed
        """
        self.probe = probe
        self.probe_timeout = probe_timeout
        self._edges: dict[tuple[str, str], ConnectivityEdge] = {}

    def declare_link(self, segment_a: str, segment_b: str) -> ConnectivityEdge:
        """
        Declare a link between two segments. Declaring twice returns the same edge.

        Raises:
            TopologyInvariantViolation: If both ends are the same segment.
        """
        if segment_a == segment_b:
            raise TopologyInvariantViolation(
                f"Cannot link segment {segment_a} to itself", entity=segment_a
            )
        key = edge_key(segment_a, segment_b)
        edge = self._edges.get(key)
        if edge is None:
            edge = ConnectivityEdge(segment_a=key[0], segment_b=key[1])
            self._edges[key] = edge
            logger.info("Link declared", edge=str(edge))
        return edge

    def mark_established(self, segment_a: str, segment_b: str) -> ConnectivityEdge:
        """Record that the provider reports the link as created."""
        edge = self._require_edge(segment_a, segment_b)
        if edge.status == EdgeStatus.PLANNED:
            edge.status = EdgeStatus.ESTABLISHED
        return edge

    def mark_verified(self, segment_a: str, segment_b: str) -> ConnectivityEdge:
        """Restore a verified edge from history without probing."""
        edge = self.declare_link(segment_a, segment_b)
        edge.status = EdgeStatus.VERIFIED
        return edge

    async def confirm_link(self, segment_a: str, segment_b: str) -> ConnectivityEdge:
        """
        Probe a declared link in both directions and verify it.

        A failed probe leaves the edge unverified. This is retryable; see
        PhaseStateMachine for the backoff policy.

        Raises:
            LinkNotReachable: If either direction fails, times out, or the probe
                collaborator reports a transient error.
            TopologyInvariantViolation: If the link was never declared.
        """
        edge = self._require_edge(segment_a, segment_b)
        if edge.is_verified:
            return edge
        if self.probe is None:
            raise LinkNotReachable(segment_a, segment_b, "no probe configured")

        edge.attempts += 1
        for source, target in ((edge.segment_a, edge.segment_b), (edge.segment_b, edge.segment_a)):
            direction = f"{source}->{target}"
            try:
                reachable = await self._probe(source, target)
            except (TransientCollaboratorError, TimeoutError) as e:
                logger.warning("Probe error", direction=direction, error=str(e))
                get_global_collector().count_probe(direction, "error")
                raise LinkNotReachable(segment_a, segment_b, direction) from e

            if not reachable:
                logger.warning("Probe failed", direction=direction, attempt=edge.attempts)
                get_global_collector().count_probe(direction, "unreachable")
                raise LinkNotReachable(segment_a, segment_b, direction)
            get_global_collector().count_probe(direction, "reachable")

        edge.status = EdgeStatus.VERIFIED
        logger.info("Link verified", edge=str(edge), attempts=edge.attempts)
        return edge

    async def _probe(self, source: str, target: str) -> bool:
        assert self.probe is not None
        if self.probe_timeout is None:
            return await self.probe.probe(source, target)
        return await asyncio.wait_for(self.probe.probe(source, target), self.probe_timeout)

    def is_reachable(self, segment_a: str, segment_b: str) -> bool:
        """True if both ends are the same segment or share a verified edge."""
        if segment_a == segment_b:
            return True
        edge = self._edges.get(edge_key(segment_a, segment_b))
        return edge is not None and edge.is_verified

    def get(self, segment_a: str, segment_b: str) -> ConnectivityEdge | None:
        return self._edges.get(edge_key(segment_a, segment_b))

    def edges(self) -> list[ConnectivityEdge]:
        return [self._edges[k] for k in sorted(self._edges)]

    def unverified(self) -> list[ConnectivityEdge]:
        return [edge for edge in self.edges() if not edge.is_verified]

    def verified_links(self) -> list[list[str]]:
        """Verified edges as sorted [a, b] pairs, the form phase records store them in."""
        return [[edge.segment_a, edge.segment_b] for edge in self.edges() if edge.is_verified]

    def _require_edge(self, segment_a: str, segment_b: str) -> ConnectivityEdge:
        edge = self._edges.get(edge_key(segment_a, segment_b))
        if edge is None:
            raise TopologyInvariantViolation(
                f"Link {segment_a} <-> {segment_b} was never declared",
                entity=f"{segment_a}<->{segment_b}",
            )
        return edge

"""Unit tests for the Connectivity Tracker."""

import asyncio

import pytest

from dnsmigrate.collaborators.simulated import SimulatedNetwork
from dnsmigrate.core.connectivity import ConnectivityTracker
from dnsmigrate.models.connectivity import EdgeStatus
from dnsmigrate.utils.exceptions import LinkNotReachable, TopologyInvariantViolation


class SlowProbe:
    """Probe that never answers in time."""

    async def probe(self, segment_a: str, segment_b: str) -> bool:
        await asyncio.sleep(1)
        return True


class OneWayProbe:
    """Probe that only succeeds from `source`."""

    def __init__(self, source: str) -> None:
        self.source = source

    async def probe(self, segment_a: str, segment_b: str) -> bool:
        return segment_a == self.source


class TestDeclareLink:
    """Test link declaration."""

    def test_declare_is_unordered_and_idempotent(self):
        tracker = ConnectivityTracker()
        first = tracker.declare_link("onprem", "hub")
        second = tracker.declare_link("hub", "onprem")

        assert first is second
        assert first.key == ("hub", "onprem")
        assert first.status == EdgeStatus.PLANNED

    def test_self_link_rejected(self):
        tracker = ConnectivityTracker()
        with pytest.raises(TopologyInvariantViolation):
            tracker.declare_link("hub", "hub")

    def test_mark_established(self):
        tracker = ConnectivityTracker()
        tracker.declare_link("onprem", "hub")

        edge = tracker.mark_established("hub", "onprem")

        assert edge.status == EdgeStatus.ESTABLISHED
        assert not tracker.is_reachable("onprem", "hub")

    def test_mark_established_requires_declaration(self):
        tracker = ConnectivityTracker()
        with pytest.raises(TopologyInvariantViolation, match="never declared"):
            tracker.mark_established("onprem", "hub")

    def test_mark_verified_restores_edge(self):
        tracker = ConnectivityTracker()
        tracker.mark_verified("onprem", "hub")

        assert tracker.is_reachable("hub", "onprem")
        assert tracker.unverified() == []


class TestReachability:
    """Test reachability queries."""

    def test_same_segment_is_reachable(self):
        assert ConnectivityTracker().is_reachable("hub", "hub")

    def test_undeclared_pair_is_unreachable(self):
        assert not ConnectivityTracker().is_reachable("onprem", "hub")

    def test_edges_are_not_transitive(self):
        tracker = ConnectivityTracker()
        tracker.mark_verified("onprem", "hub")
        tracker.mark_verified("hub", "managed")

        assert not tracker.is_reachable("onprem", "managed")
        assert tracker.verified_links() == [["hub", "managed"], ["hub", "onprem"]]


class TestConfirmLink:
    """Test bidirectional confirmation."""

    @pytest.mark.asyncio
    async def test_confirm_verifies_edge(self):
        network = SimulatedNetwork()
        network.peer("onprem", "hub")
        tracker = ConnectivityTracker(network)
        tracker.declare_link("onprem", "hub")

        edge = await tracker.confirm_link("onprem", "hub")

        assert edge.is_verified
        assert edge.attempts == 1
        assert [c.target for c in network.calls_for("probe")] == ["hub->onprem", "onprem->hub"]

    @pytest.mark.asyncio
    async def test_unpeered_link_not_reachable(self):
        tracker = ConnectivityTracker(SimulatedNetwork())
        tracker.declare_link("onprem", "hub")

        with pytest.raises(LinkNotReachable) as exc_info:
            await tracker.confirm_link("onprem", "hub")

        assert exc_info.value.direction == "hub->onprem"
        assert not tracker.is_reachable("onprem", "hub")

    @pytest.mark.asyncio
    async def test_one_direction_is_not_enough(self):
        tracker = ConnectivityTracker(OneWayProbe("hub"))
        tracker.declare_link("onprem", "hub")

        with pytest.raises(LinkNotReachable, match="onprem->hub"):
            await tracker.confirm_link("onprem", "hub")
        assert tracker.get("onprem", "hub").status == EdgeStatus.PLANNED

    @pytest.mark.asyncio
    async def test_probe_timeout_is_not_reachable(self):
        tracker = ConnectivityTracker(SlowProbe(), probe_timeout=0.01)
        tracker.declare_link("onprem", "hub")

        with pytest.raises(LinkNotReachable):
            await tracker.confirm_link("onprem", "hub")

    @pytest.mark.asyncio
    async def test_transient_probe_error_is_not_reachable(self):
        network = SimulatedNetwork()
        network.peer("onprem", "hub")
        network.fail_next("probe")
        tracker = ConnectivityTracker(network)
        tracker.declare_link("onprem", "hub")

        with pytest.raises(LinkNotReachable):
            await tracker.confirm_link("onprem", "hub")

        edge = await tracker.confirm_link("onprem", "hub")
        assert edge.is_verified
        assert edge.attempts == 2

    @pytest.mark.asyncio
    async def test_confirm_undeclared_link_rejected(self):
        tracker = ConnectivityTracker(SimulatedNetwork())
        with pytest.raises(TopologyInvariantViolation):
            await tracker.confirm_link("onprem", "hub")

    @pytest.mark.asyncio
    async def test_verified_edge_is_not_probed_again(self):
        network = SimulatedNetwork()
        tracker = ConnectivityTracker(network)
        tracker.mark_verified("onprem", "hub")

        await tracker.confirm_link("onprem", "hub")

        assert network.calls_for("probe") == []

"""Unit tests for provisioning, validation suites and the Cutover Controller."""

import pytest

from dnsmigrate.collaborators.simulated import SimulatedNetwork
from dnsmigrate.config import RetryConfig
from dnsmigrate.constants import RESOURCE_DNS_SERVER, RESOURCE_ENDPOINT, RESOURCE_SEGMENT
from dnsmigrate.core.connectivity import ConnectivityTracker
from dnsmigrate.core.forwarding import ForwardingRuleEngine
from dnsmigrate.execution.calls import CallPolicy
from dnsmigrate.execution.cancellation import CancellationScope
from dnsmigrate.execution.cutover import CutoverController, CutoverPlan
from dnsmigrate.execution.provisioning import (
    InfrastructureBuilder,
    infrastructure_specs,
    link_spec,
)
from dnsmigrate.execution.validator import Validator, build_suite
from dnsmigrate.models.validation import ProbeExpectation
from dnsmigrate.utils.exceptions import ApplyRejected, PhaseCancelled, ValidationFailed
from dnsmigrate.utils.locking import KeyedLock

POLICY = CallPolicy(RetryConfig(backoff_multiplier=0, backoff_min=0, backoff_max=0), timeout=5)


@pytest.fixture
def tracker() -> ConnectivityTracker:
    tracker = ConnectivityTracker()
    tracker.mark_verified("onprem", "hub")
    tracker.mark_verified("hub", "managed")
    return tracker


def controller_for(network: SimulatedNetwork) -> CutoverController:
    return CutoverController(network, Validator(network, POLICY), POLICY, KeyedLock())


def full_plan(topology, tracker) -> CutoverPlan:
    rule_set = ForwardingRuleEngine().compute(topology, tracker).require_complete()
    plan = CutoverPlan()
    for name in sorted(topology.zones):
        plan.add_zone(topology, topology.zones[name].authority, name)
    plan.add_rules(topology, rule_set)
    plan.add_default_resolvers(topology)
    return plan


class TestProvisioning:
    """Test infrastructure realization and teardown."""

    def test_specs_are_tiered(self, hub_spoke_topology):
        tiers = infrastructure_specs(hub_spoke_topology)

        assert [s.kind for s in tiers[0]] == [RESOURCE_SEGMENT] * 3
        kinds = [s.kind for s in tiers[1]]
        assert kinds.count(RESOURCE_DNS_SERVER) == 3
        assert kinds.count(RESOURCE_ENDPOINT) == 1
        endpoint = next(s for s in tiers[1] if s.kind == RESOURCE_ENDPOINT)
        assert endpoint.name == "store.blob.example"
        assert endpoint.container == "rg-managed"

    def test_link_spec_names_sorted_pair(self, hub_spoke_topology):
        spec = link_spec(hub_spoke_topology, "onprem", "hub")

        assert spec.name == "hub--onprem"
        assert spec.properties["containers"] == ["rg-hub", "rg-onprem"]

    @pytest.mark.asyncio
    async def test_realize_and_teardown(self, hub_spoke_topology, network):
        builder = InfrastructureBuilder(network, POLICY, KeyedLock())

        handles = await builder.realize(infrastructure_specs(hub_spoke_topology))

        assert len(handles) == 7
        assert len(network.resources) == 7

        deleted = await builder.teardown(handles)

        assert deleted == list(reversed(handles))
        assert network.resources == {}

    @pytest.mark.asyncio
    async def test_failed_tier_stops_realization(self, hub_spoke_topology, network):
        network.reject("create_or_update", "segment/hub")
        builder = InfrastructureBuilder(network, POLICY, KeyedLock())

        with pytest.raises(ApplyRejected):
            await builder.realize(infrastructure_specs(hub_spoke_topology))

        assert not any(c.target.startswith("dns_server/") for c in network.calls)

    @pytest.mark.asyncio
    async def test_transient_failure_retried_per_call(self, hub_spoke_topology, network):
        network.fail_next("create_or_update", times=2)
        builder = InfrastructureBuilder(network, POLICY, KeyedLock(), max_concurrency=1)

        handles = await builder.realize(infrastructure_specs(hub_spoke_topology))

        assert len(handles) == 7
        assert len(network.calls_for("create_or_update")) == 9


class TestValidationSuite:
    """Test suite derivation and probing."""

    def test_suite_covers_segments_and_zones(self, hub_spoke_topology):
        suite = build_suite(hub_spoke_topology)

        by_key = {(e.segment, e.name): e for e in suite}
        assert len(suite) == 6
        assert by_key[("hub", "store.blob.example")].expected_authoritative
        assert not by_key[("onprem", "store.blob.example")].expected_authoritative
        assert by_key[("onprem", "vm1.hub.pvt")].expected_address == "10.1.0.10"
        assert not any(e.segment == "managed" for e in suite)

    def test_non_forwarder_probed_for_its_own_zones(self, hub_spoke_topology):
        hub_spoke_topology.set_zone_authority("blob.example", "external-dns")
        hub_spoke_topology.commit_zone_authority("blob.example")

        suite = build_suite(hub_spoke_topology, zones=["blob.example"])

        managed = [e for e in suite if e.segment == "managed"]
        assert len(managed) == 1
        assert managed[0].expected_authoritative

    @pytest.mark.asyncio
    async def test_collaborator_error_fails_single_probe(self, network):
        network.reject("resolve", "hub/vm1.hub.pvt")
        suite = [
            ProbeExpectation("hub", "vm1.hub.pvt", "10.1.0.10", True),
            ProbeExpectation("onprem", "vm1.hub.pvt", "10.1.0.10", False),
        ]

        report = await Validator(network, POLICY).run(suite, "probe-test")

        assert not report.passed
        assert len(report.results) == 2
        rejected = report.results[0]
        assert rejected.actual is None
        assert "rejected" in rejected.error
        assert report.summary() == {"label": "probe-test", "probes": 2, "failed": 2}


class TestCutoverController:
    """Test push ordering, cancellation and validation."""

    @pytest.mark.asyncio
    async def test_push_order(self, hub_spoke_topology, tracker, network):
        plan = full_plan(hub_spoke_topology, tracker)

        await controller_for(network).apply(plan, [], "order-test")

        operations = [c.operation for c in network.calls]
        last_zone = max(i for i, op in enumerate(operations) if op == "push_zone_file")
        first_rules = operations.index("push_forwarding_rules")
        last_rules = max(i for i, op in enumerate(operations) if op == "push_forwarding_rules")
        first_resolver = operations.index("set_default_resolver")
        assert last_zone < first_rules
        assert last_rules < first_resolver

    @pytest.mark.asyncio
    async def test_plan_skips_non_forwarders(self, hub_spoke_topology, tracker):
        plan = full_plan(hub_spoke_topology, tracker)

        assert sorted(p.server.id for p in plan.rule_pushes) == ["hub-dns", "onprem-dns"]
        assert len(plan.resolver_settings) == 3
        assert len(plan) == 3 + 2 + 3

    @pytest.mark.asyncio
    async def test_validates_after_pushes(self, hub_spoke_topology, tracker, network):
        network.peer("onprem", "hub")
        network.peer("hub", "managed")
        plan = full_plan(hub_spoke_topology, tracker)

        report = await controller_for(network).apply(
            plan, build_suite(hub_spoke_topology), "Cutover"
        )

        assert report.passed
        assert len(report.results) == 6

    @pytest.mark.asyncio
    async def test_validation_failure_raises_with_details(
        self, hub_spoke_topology, tracker, network
    ):
        plan = full_plan(hub_spoke_topology, tracker)

        with pytest.raises(ValidationFailed) as exc_info:
            await controller_for(network).apply(plan, build_suite(hub_spoke_topology), "Cutover")

        failure = exc_info.value.failures[0]
        assert failure.expectation.segment == "hub"
        assert "expected=" in str(failure) and "actual=" in str(failure)

    @pytest.mark.asyncio
    async def test_cancel_before_apply(self, hub_spoke_topology, tracker, network):
        scope = CancellationScope("DnsConfig")
        scope.cancel()

        with pytest.raises(PhaseCancelled):
            await controller_for(network).apply(
                full_plan(hub_spoke_topology, tracker), [], "DnsConfig", scope
            )

        assert network.calls == []

    @pytest.mark.asyncio
    async def test_rejected_push_aborts_apply(self, hub_spoke_topology, tracker, network):
        network.reject("push_forwarding_rules", "hub-dns")

        with pytest.raises(ApplyRejected):
            await controller_for(network).apply(
                full_plan(hub_spoke_topology, tracker), [], "DnsConfig"
            )

        assert network.calls_for("set_default_resolver") == []

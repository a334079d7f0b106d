"""Unit tests for the Forwarding Rule Engine."""

import pytest

from dnsmigrate.constants import UPSTREAM
from dnsmigrate.core.connectivity import ConnectivityTracker
from dnsmigrate.core.forwarding import ForwardingRuleEngine
from dnsmigrate.core.topology import TopologyModel
from dnsmigrate.models.rules import RuleSet, TargetSelection
from dnsmigrate.utils.exceptions import NoReachableAuthority


@pytest.fixture
def topology() -> TopologyModel:
    model = TopologyModel(name="rules", upstream="203.0.113.53")
    model.add_segment("onprem", "10.0.0.0/24", default_resolver="onprem-dns")
    model.add_segment("hub", "10.1.0.0/24", default_resolver="hub-dns")
    model.add_segment("managed", "10.2.0.0/24", default_resolver="external-dns")
    model.add_dns_server("onprem-dns", "onprem", "10.0.0.4")
    model.add_dns_server("hub-dns", "hub", "10.1.0.4")
    model.add_dns_server("external-dns", "managed", "10.2.0.4", forwarder=False)
    model.add_zone("onprem.pvt", "onprem-dns")
    model.add_zone("hub.pvt", "hub-dns")
    model.add_zone("blob.example", "hub-dns")
    return model


@pytest.fixture
def tracker() -> ConnectivityTracker:
    tracker = ConnectivityTracker()
    tracker.mark_verified("onprem", "hub")
    tracker.mark_verified("hub", "managed")
    return tracker


def migrate(model: TopologyModel, zone: str, target: str) -> None:
    model.set_zone_authority(zone, target)
    model.commit_zone_authority(zone)


class TestRuleSelection:
    """Test target selection rules."""

    def test_authority_reachable(self, topology, tracker):
        computation = ForwardingRuleEngine().compute(topology, tracker)

        assert computation.ok
        rule = computation.rule_set.get("onprem-dns", "hub.pvt")
        assert rule.target == "hub-dns"
        assert rule.target_address == "10.1.0.4"
        assert rule.selection == TargetSelection.AUTHORITY

    def test_no_rule_for_own_zone(self, topology, tracker):
        rule_set = ForwardingRuleEngine().compute(topology, tracker).rule_set

        assert rule_set.get("hub-dns", "hub.pvt") is None
        assert rule_set.get("onprem-dns", "onprem.pvt") is None

    def test_non_forwarder_holds_no_rules(self, topology, tracker):
        rule_set = ForwardingRuleEngine().compute(topology, tracker).rule_set

        assert rule_set.for_holder("external-dns") == []
        assert "external-dns" in rule_set.servers

    def test_legacy_authority_during_migration_window(self, topology, tracker):
        migrate(topology, "blob.example", "external-dns")

        rule_set = ForwardingRuleEngine().compute(topology, tracker).require_complete()

        onprem = rule_set.get("onprem-dns", "blob.example")
        assert onprem.target == "hub-dns"
        assert onprem.selection == TargetSelection.LEGACY
        hub = rule_set.get("hub-dns", "blob.example")
        assert hub.target == "external-dns"
        assert hub.selection == TargetSelection.AUTHORITY

    def test_authority_wins_over_legacy(self, topology, tracker):
        migrate(topology, "hub.pvt", "onprem-dns")

        rule = ForwardingRuleEngine().compute(topology, tracker).rule_set.get(
            "hub-dns", "hub.pvt"
        )

        assert rule.target == "onprem-dns"
        assert rule.selection == TargetSelection.AUTHORITY

    def test_legacy_that_is_the_holder_is_skipped(self, topology):
        tracker = ConnectivityTracker()
        tracker.mark_verified("onprem", "hub")
        migrate(topology, "blob.example", "external-dns")

        computation = ForwardingRuleEngine().compute(topology, tracker)

        pairs = {(d.holder, d.subject) for d in computation.diagnostics}
        assert ("hub-dns", "blob.example") in pairs

    def test_upstream_for_public_zone(self, topology):
        topology.add_zone("public.example", "hub-dns", private=False)

        computation = ForwardingRuleEngine().compute(topology, ConnectivityTracker())

        rule = computation.rule_set.get("onprem-dns", "public.example")
        assert rule.target == UPSTREAM
        assert rule.is_upstream
        assert rule.target_address == "203.0.113.53"
        assert rule.selection == TargetSelection.UPSTREAM

    def test_private_zone_never_uses_upstream(self, topology):
        computation = ForwardingRuleEngine().compute(topology, ConnectivityTracker())

        assert computation.rule_set.get("onprem-dns", "hub.pvt") is None
        assert ("onprem-dns", "hub.pvt") in {(d.holder, d.subject) for d in computation.diagnostics}

    def test_public_zone_without_upstream_fails_closed(self):
        model = TopologyModel(name="no-upstream")
        model.add_segment("a", "10.0.0.0/24")
        model.add_segment("b", "10.1.0.0/24")
        model.add_dns_server("a-dns", "a", "10.0.0.4")
        model.add_dns_server("b-dns", "b", "10.1.0.4")
        model.add_zone("public.example", "b-dns", private=False)

        computation = ForwardingRuleEngine().compute(model, ConnectivityTracker())

        assert not computation.ok
        assert "no upstream" in computation.diagnostics[0].reason


class TestFailClosed:
    """Test that incomplete computations cannot be applied."""

    def test_require_complete_raises_with_pairs(self, topology):
        computation = ForwardingRuleEngine().compute(topology, ConnectivityTracker())

        with pytest.raises(NoReachableAuthority) as exc_info:
            computation.require_complete()

        assert exc_info.value.pairs == {
            ("hub-dns", "onprem.pvt"),
            ("onprem-dns", "hub.pvt"),
            ("onprem-dns", "blob.example"),
        }

    def test_every_rule_target_is_reachable(self, topology, tracker):
        migrate(topology, "blob.example", "external-dns")
        rule_set = ForwardingRuleEngine().compute(topology, tracker).require_complete()

        for rule in rule_set.rules:
            if rule.is_upstream:
                continue
            holder_segment = topology.servers[rule.holder].segment
            target_segment = topology.servers[rule.target].segment
            assert tracker.is_reachable(holder_segment, target_segment)


class TestDeterminism:
    """Test byte-for-byte stable output."""

    def test_identical_inputs_identical_output(self, topology, tracker):
        engine = ForwardingRuleEngine()
        first = engine.compute(topology, tracker).rule_set
        second = engine.compute(topology, tracker).rule_set

        assert first.to_json() == second.to_json()
        assert first.digest == second.digest

    def test_rules_sorted_by_holder_and_zone(self, topology, tracker):
        rules = ForwardingRuleEngine().compute(topology, tracker).rule_set.rules

        keys = [(r.holder, r.zone) for r in rules]
        assert keys == sorted(keys)

    def test_rule_set_round_trip(self, topology, tracker):
        rule_set = ForwardingRuleEngine().compute(topology, tracker).rule_set

        assert RuleSet.from_dict(rule_set.to_dict()).digest == rule_set.digest

    def test_staged_change_ignored(self, topology, tracker):
        engine = ForwardingRuleEngine()
        before = engine.compute(topology, tracker).rule_set.digest

        topology.set_zone_authority("blob.example", "external-dns")

        assert engine.compute(topology, tracker).rule_set.digest == before


class TestDefaultResolvers:
    """Test default resolver reachability checks."""

    def test_all_reachable(self, topology, tracker):
        assert ForwardingRuleEngine().check_default_resolvers(topology, tracker) == []

    def test_unreachable_resolver_reported(self, topology, tracker):
        topology.segments["onprem"].default_resolver = "external-dns"

        diagnostics = ForwardingRuleEngine().check_default_resolvers(topology, tracker)

        assert [(d.holder, d.subject) for d in diagnostics] == [("onprem", "external-dns")]

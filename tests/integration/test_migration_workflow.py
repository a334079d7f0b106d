"""
Integration tests for complete migration workflows.

Tests the full orchestration against the simulated network:
1. Phases run in order and fail closed without connectivity
2. Zone migration with a legacy fallback window, revert and retirement
3. Idempotent re-runs, probe retries and staged-change isolation
"""

import pytest

from dnsmigrate.collaborators.simulated import SimulatedNetwork
from dnsmigrate.models.rules import TargetSelection
from dnsmigrate.persistence.phase_log import PhaseLog
from dnsmigrate.utils.exceptions import (
    NoReachableAuthority,
    PhaseOrderError,
    TopologyInvariantViolation,
)

pytestmark = pytest.mark.integration


class TestTwoSegmentWorkflow:
    """Rules fail closed until the segments are linked."""

    @pytest.mark.asyncio
    async def test_dns_config_waits_for_link(self, make_machine, two_segment_declaration):
        network = SimulatedNetwork()
        machine = make_machine(two_segment_declaration, network)

        await machine.advance("Infrastructure")
        await machine.advance("Connectivity")

        with pytest.raises(NoReachableAuthority) as exc_info:
            await machine.advance("DnsConfig")

        assert exc_info.value.pairs == {("hub-dns", "onprem.pvt"), ("onprem-dns", "hub.pvt")}
        failed = machine.phase_log.records()[-1]
        assert failed.phase == "DnsConfig"
        assert not failed.passed
        assert len(failed.diagnostics) == 2
        assert network.calls_for("push_forwarding_rules") == []

        network.peer("onprem", "hub")
        machine.tracker.declare_link("onprem", "hub")
        await machine.tracker.confirm_link("onprem", "hub")

        record = await machine.advance("DnsConfig")

        assert record.passed
        assert {(r["holder"], r["zone"]) for r in record.details["rules"]} == {
            ("hub-dns", "onprem.pvt"),
            ("onprem-dns", "hub.pvt"),
        }

        cutover = await machine.advance("Cutover")

        assert cutover.details["validation"]["failed"] == 0
        answer = await network.resolve("onprem", "vm1.hub.pvt")
        assert answer.address == "10.1.0.10"
        assert not answer.authoritative

    @pytest.mark.asyncio
    async def test_out_of_order_request_not_recorded(self, make_machine, two_segment_declaration):
        machine = make_machine(two_segment_declaration, SimulatedNetwork())
        await machine.advance("Infrastructure")

        with pytest.raises(PhaseOrderError):
            await machine.advance("DnsConfig")

        assert [r.phase for r in machine.phase_log.records()] == ["Infrastructure"]


class TestHubSpokeMigration:
    """blob.example moves from hub-dns to the managed authoritative service."""

    @pytest.mark.asyncio
    async def test_full_run(self, make_machine, hub_spoke_declaration):
        network = SimulatedNetwork()
        machine = make_machine(hub_spoke_declaration, network)

        records = await machine.run()

        assert [r.phase for r in records] == [
            "Infrastructure",
            "Connectivity",
            "DnsConfig",
            "Cutover",
            "ZoneMigration:blob.example",
            "Complete",
        ]
        migration = records[4]
        assert migration.details["pre_validation"]["failed"] == 0
        assert migration.details["post_validation"]["failed"] == 0
        assert records[-1].details["authorities"]["blob.example"] == "external-dns"

        managed = await network.resolve("managed", "store.blob.example")
        assert managed.address == "10.2.0.10"
        assert managed.authoritative
        onprem = await network.resolve("onprem", "store.blob.example")
        assert onprem.address == "10.2.0.10"
        assert not onprem.authoritative

    @pytest.mark.asyncio
    async def test_legacy_window_and_retirement(self, make_machine, hub_spoke_declaration):
        network = SimulatedNetwork()
        machine = make_machine(hub_spoke_declaration, network)
        await machine.run()

        rule = machine.compute_rules().rule_set.get("onprem-dns", "blob.example")
        assert rule.target == "hub-dns"
        assert rule.selection == TargetSelection.LEGACY

        with pytest.raises(NoReachableAuthority) as exc_info:
            await machine.retire_legacy("blob.example")

        assert ("onprem-dns", "blob.example") in exc_info.value.pairs
        assert machine.topology.zones["blob.example"].legacy == ["hub-dns"]
        assert not machine.phase_log.records()[-1].passed

    @pytest.mark.asyncio
    async def test_retirement_after_direct_link(self, make_machine, hub_spoke_declaration):
        network = SimulatedNetwork()
        machine = make_machine(hub_spoke_declaration, network)
        await machine.run()
        network.peer("onprem", "managed")
        machine.tracker.declare_link("onprem", "managed")
        await machine.tracker.confirm_link("onprem", "managed")

        record = await machine.retire_legacy("blob.example")

        assert record.details["retired"] == ["hub-dns"]
        assert machine.topology.zones["blob.example"].legacy == []
        rule = machine.compute_rules().rule_set.get("onprem-dns", "blob.example")
        assert rule.target == "external-dns"
        assert (await machine.retire_legacy("blob.example")).sequence == record.sequence

    @pytest.mark.asyncio
    async def test_revert_and_remigrate(self, make_machine, hub_spoke_declaration):
        network = SimulatedNetwork()
        machine = make_machine(hub_spoke_declaration, network)
        await machine.run()

        revert = await machine.revert_zone("blob.example")

        assert revert.details["from"] == "external-dns"
        assert revert.details["to"] == "hub-dns"
        assert machine.topology.zones["blob.example"].authority == "hub-dns"
        hub = await network.resolve("hub", "store.blob.example")
        assert hub.authoritative

        records = await machine.run()

        assert [r.phase for r in records] == ["ZoneMigration:blob.example", "Complete"]
        assert machine.topology.zones["blob.example"].authority == "external-dns"


class TestIdempotenceAndRetries:
    """Re-runs are no-ops and transient faults are absorbed."""

    @pytest.mark.asyncio
    async def test_rerun_infrastructure_is_noop(self, make_machine, hub_spoke_declaration):
        network = SimulatedNetwork()
        machine = make_machine(hub_spoke_declaration, network)
        first = await machine.advance("Infrastructure")
        creates = len(network.calls_for("create_or_update"))

        second = await machine.advance("Infrastructure")

        assert second == first
        assert len(machine.phase_log) == 1
        assert len(network.calls_for("create_or_update")) == creates

    @pytest.mark.asyncio
    async def test_connectivity_survives_probe_failures(
        self, make_machine, hub_spoke_declaration
    ):
        network = SimulatedNetwork()
        machine = make_machine(hub_spoke_declaration, network)
        await machine.advance("Infrastructure")
        network.fail_probes(2)

        record = await machine.advance("Connectivity")

        assert record.passed
        assert record.details["links"] == [["hub", "managed"], ["hub", "onprem"]]
        assert machine.tracker.is_reachable("onprem", "hub")
        assert machine.tracker.is_reachable("managed", "hub")

    def test_second_staged_change_rejected(self, hub_spoke_topology):
        hub_spoke_topology.set_zone_authority("blob.example", "external-dns")
        snapshot = hub_spoke_topology.snapshot_hash

        with pytest.raises(TopologyInvariantViolation, match="pending authority change"):
            hub_spoke_topology.set_zone_authority("blob.example", "onprem-dns")

        assert hub_spoke_topology.snapshot_hash == snapshot
        assert hub_spoke_topology.zones["blob.example"].pending_authority == "external-dns"

    @pytest.mark.asyncio
    async def test_resume_in_new_process(self, make_machine, hub_spoke_declaration, tmp_path):
        network = SimulatedNetwork()
        path = tmp_path / "phases.jsonl"
        first = make_machine(hub_spoke_declaration, network, phase_log=PhaseLog(path))
        for _ in range(4):
            await first.advance()
        first.phase_log.close()

        second = make_machine(hub_spoke_declaration, network, phase_log=PhaseLog(path))
        records = await second.run()

        assert [r.phase for r in records] == ["ZoneMigration:blob.example", "Complete"]
        assert len(PhaseLog(path)) == 6

"""Phase State Machine - ordered, guarded, resumable phase transitions.

Phases, in order:

    Infrastructure -> Connectivity -> DnsConfig -> Cutover
        -> ZoneMigration:<zone> (plan order) -> Complete

plus the operator-requested forward phases RevertZone:<zone>,
RetireLegacy:<zone> and the terminal Teardown.

Every transition follows the same path:

1. Take the topology lease (single writer across processes). It is renewed
   in the background until the transition ends.
2. Skip if the phase is already committed for the current state. A committed
   core phase whose snapshot hash no longer matches is a history conflict.
3. Check ordering guards. A refused request is not recorded.
4. Run the phase. Any MigrationError appends a failed audit record and is
   re-raised; the prior committed phase stays authoritative.
5. Confirm the lease is still ours, then append the passing record. Only
   then is the phase committed.

Connectivity state and authority moves are not persisted separately: resume()
replays them from passing records onto models rebuilt from the declaration.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

import structlog

from ..config import ProbeConfig
from ..constants import (
    COMPLETE,
    CONNECTIVITY,
    CORE_PHASES,
    CUTOVER,
    DNS_CONFIG,
    INFRASTRUCTURE,
    RETIRE_LEGACY,
    REVERT_ZONE,
    TEARDOWN,
    ZONE_MIGRATION,
    phase_name,
    split_phase_name,
)
from ..core.connectivity import ConnectivityTracker
from ..core.forwarding import ForwardingRuleEngine
from ..core.topology import TopologyModel
from ..models.connectivity import edge_key
from ..models.phases import PhaseRecord
from ..models.resources import ResourceHandle
from ..models.rules import RuleComputation
from ..observability.logger import LogContext
from ..observability.metrics import get_global_collector
from ..persistence.phase_log import PhaseLog
from ..utils.exceptions import (
    LinkNotReachable,
    MigrationError,
    NoReachableAuthority,
    PhaseCancelled,
    PhaseOrderError,
    TopologyInvariantViolation,
    ValidationFailed,
)
from ..utils.locking import PhaseLease, default_holder_id
from .calls import confirm_link_with_retry
from .cancellation import CancellationScope
from .cutover import CutoverController, CutoverPlan
from .provisioning import InfrastructureBuilder, infrastructure_specs, link_spec
from .validator import Validator, build_suite

logger = structlog.get_logger(__name__)

_ZONE_PHASES = (ZONE_MIGRATION, REVERT_ZONE, RETIRE_LEGACY)


def _diagnostics(error: MigrationError) -> list[str]:
    if isinstance(error, NoReachableAuthority):
        return [str(d) for d in error.diagnostics]
    if isinstance(error, ValidationFailed):
        return [str(f) for f in error.failures]
    return [str(error)]


class PhaseStateMachine:
    """Drive one topology through its phases."""

    def __init__(
        self,
        topology: TopologyModel,
        tracker: ConnectivityTracker,
        phase_log: PhaseLog,
        builder: InfrastructureBuilder,
        controller: CutoverController,
        links: Sequence[tuple[str, str]] = (),
        migrations: Sequence[tuple[str, str]] = (),
        engine: ForwardingRuleEngine | None = None,
        probe_config: ProbeConfig | None = None,
        lease: PhaseLease | None = None,
        holder: str | None = None,
    ) -> None:
        """
        Initialize PhaseStateMachine.

        Args:
            topology: Topology Model built from the declaration
            tracker: Connectivity Tracker (starts empty)
            phase_log: Append-only phase log
            builder: Provisioning front-end
            controller: Cutover Controller (also owns the Validator)
            links: Segment pairs to peer during Connectivity
            migrations: Ordered (zone, new authority) plan
            engine: Forwarding Rule Engine
            probe_config: Retry policy for link confirmation
            lease: Cross-process lease; None disables it (rehearsals, tests)
            holder: Lease holder id for this process

        Raises:
            TopologyInvariantViolation: A link or migration names an unknown
                segment, zone or server.
        """
        self.topology = topology
        self.tracker = tracker
        self.phase_log = phase_log
        self.builder = builder
        self.controller = controller
        self.engine = engine or ForwardingRuleEngine()
        self.probe_config = probe_config or ProbeConfig()
        self.lease = lease
        self.holder = holder or default_holder_id()

        for a, b in links:
            for segment in (a, b):
                if segment not in topology.segments:
                    raise TopologyInvariantViolation(
                        f"Link {a} <-> {b} references unknown segment {segment}", entity=segment
                    )
        self.links = sorted({edge_key(a, b) for a, b in links})

        self.migrations: dict[str, str] = {}
        for zone, target in migrations:
            if zone not in topology.zones:
                raise TopologyInvariantViolation(f"Migration of unknown zone {zone}", entity=zone)
            if target not in topology.servers:
                raise TopologyInvariantViolation(
                    f"Migration of {zone} targets unknown server {target}", entity=zone
                )
            self.migrations[zone] = target

        self._handlers: dict[str, Callable[[str | None, CancellationScope], Awaitable[dict]]] = {
            INFRASTRUCTURE: self._infrastructure,
            CONNECTIVITY: self._connectivity,
            DNS_CONFIG: self._dns_config,
            CUTOVER: self._cutover,
            ZONE_MIGRATION: self._zone_migration,
            REVERT_ZONE: self._revert_zone,
            RETIRE_LEGACY: self._retire_legacy,
            COMPLETE: self._complete,
            TEARDOWN: self._teardown,
        }

    @property
    def validator(self) -> Validator:
        return self.controller.validator

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resume(self) -> int:
        """
        Replay passing records onto freshly built models.

        Restores verified links, authority moves and legacy retirement. Links
        confirmed outside Connectivity come back from the `verified_links` of
        the rule-computing phase that relied on them.

        Returns:
            Number of records replayed
        """
        committed = self.phase_log.committed()
        for record in committed:
            links = record.details.get("verified_links", [])
            if record.kind == CONNECTIVITY:
                links = links + record.details.get("links", [])
            for a, b in links:
                self.tracker.mark_verified(a, b)

            if record.kind in (ZONE_MIGRATION, REVERT_ZONE) and record.zone:
                target = record.details["to"]
                if self.topology.zones[record.zone].authority != target:
                    self.topology.set_zone_authority(record.zone, target)
                    self.topology.commit_zone_authority(record.zone)
            elif record.kind == RETIRE_LEGACY and record.zone:
                self.topology.retire_legacy(record.zone)

        if committed and committed[-1].snapshot_hash != self.topology.snapshot_hash:
            logger.warning(
                "Declaration differs from the committed topology",
                committed=committed[-1].snapshot_hash[:12],
                current=self.topology.snapshot_hash[:12],
            )
        logger.info("Phase log replayed", records=len(committed))
        return len(committed)

    def next_phase(self) -> str | None:
        """Next phase of the plan, or None when Complete is current or after Teardown."""
        if self.phase_log.is_committed(TEARDOWN):
            return None
        for phase in CORE_PHASES:
            if not self.phase_log.is_committed(phase):
                return phase
        pending = self.pending_migrations()
        if pending:
            return phase_name(ZONE_MIGRATION, pending[0])
        complete = self.phase_log.latest(COMPLETE)
        if complete is None or self._zone_changed_since(complete.sequence):
            return COMPLETE
        return None

    def pending_migrations(self) -> list[str]:
        """Planned zones whose latest migrate/revert record is not a migration."""
        pending = []
        for zone in self.migrations:
            latest = self._latest_zone_record(zone)
            if latest is None or not latest.is_migration:
                pending.append(zone)
        return pending

    def compute_rules(self) -> RuleComputation:
        """Rule computation for the current committed state (no side effects)."""
        return self.engine.compute(self.topology, self.tracker)

    def zone_authorities(self) -> dict[str, dict[str, Any]]:
        return {
            name: {"authority": zone.authority, "legacy": list(zone.legacy)}
            for name, zone in sorted(self.topology.zones.items())
        }

    async def advance(
        self, phase: str | None = None, scope: CancellationScope | None = None
    ) -> PhaseRecord | None:
        """
        Run one phase transition.

        Args:
            phase: Record name to run (default: next_phase())
            scope: Cancellation scope for this transition

        Returns:
            The committed record (the existing one if the phase was already
            committed for the current state), or None if nothing is left to do

        Raises:
            LeaseHeldError: Another orchestrator holds the topology lease, or
                took it over before this transition could commit
            PhaseOrderError: The phase is out of order or conflicts with history
            MigrationError: The transition failed; a failed record was appended
        """
        name = phase or self.next_phase()
        if name is None:
            logger.info("Nothing left to do", topology=self.topology.name)
            return None
        kind, zone = split_phase_name(name)
        handler = self._handlers.get(kind)
        if handler is None:
            raise PhaseOrderError(name, "unknown phase")
        if kind in _ZONE_PHASES and not zone:
            raise PhaseOrderError(name, "zone phases need a zone, e.g. ZoneMigration:example.pvt")

        scope = scope or CancellationScope()
        scope.phase = name

        with LogContext(topology=self.topology.name, phase=name):
            async with self._leased():
                return await self._transition(kind, zone, name, handler, scope)

    async def _transition(
        self,
        kind: str,
        zone: str | None,
        name: str,
        handler: Callable[[str | None, CancellationScope], Awaitable[dict]],
        scope: CancellationScope,
    ) -> PhaseRecord:
        collector = get_global_collector()
        if self.phase_log.is_committed(TEARDOWN):
            raise PhaseOrderError(name, "topology has been torn down")
        existing = self._committed_record(kind, zone, name)
        if existing is not None:
            logger.info("Phase already committed, skipping", sequence=existing.sequence)
            collector.count_phase(kind, "noop")
            return existing
        self._check_order(kind, zone, name)

        snapshot_before = self.topology.snapshot_hash
        logger.info("Phase started", snapshot=snapshot_before[:12])
        try:
            scope.check()
            details = await handler(zone, scope)
        except MigrationError as e:
            record = self.phase_log.append(
                name,
                snapshot_hash=snapshot_before,
                passed=False,
                diagnostics=_diagnostics(e),
                details={"error": type(e).__name__},
            )
            status = "cancelled" if isinstance(e, PhaseCancelled) else "failed"
            collector.count_phase(kind, status)
            logger.error("Phase failed", error=str(e), sequence=record.sequence)
            raise

        if self.lease is not None:
            # An expired lease may have been taken over while the phase ran
            self.lease.renew(self.topology.name, self.holder)
        record = self.phase_log.append(
            name, snapshot_hash=self.topology.snapshot_hash, passed=True, details=details
        )
        collector.count_phase(kind, "committed")
        logger.info(
            "Phase committed", sequence=record.sequence, snapshot=record.snapshot_hash[:12]
        )
        return record

    async def run(self) -> list[PhaseRecord]:
        """Advance until Complete. Stops at the first failure (re-raised)."""
        records = []
        while True:
            name = self.next_phase()
            if name is None:
                break
            record = await self.advance(name)
            if record is not None:
                records.append(record)
            if name == COMPLETE:
                break
        return records

    async def revert_zone(
        self, zone: str, scope: CancellationScope | None = None
    ) -> PhaseRecord | None:
        return await self.advance(phase_name(REVERT_ZONE, zone), scope)

    async def retire_legacy(
        self, zone: str, scope: CancellationScope | None = None
    ) -> PhaseRecord | None:
        return await self.advance(phase_name(RETIRE_LEGACY, zone), scope)

    async def teardown(self, scope: CancellationScope | None = None) -> PhaseRecord | None:
        return await self.advance(TEARDOWN, scope)

    def check_dns_config_guard(self, zone: str, target: str) -> None:
        """
        Require a committed DnsConfig that covers `zone` on `target`.

        Raises:
            PhaseOrderError: DnsConfig is missing, or does not include the
                zone, the server, or (for a forwarder) a rule for the zone held
                by the server.
        """
        name = phase_name(ZONE_MIGRATION, zone)
        record = self.phase_log.latest(DNS_CONFIG)
        if record is None:
            raise PhaseOrderError(name, "DnsConfig has not been committed")
        if zone not in record.details.get("zones", []):
            raise PhaseOrderError(name, f"committed DnsConfig does not include zone {zone}")
        if target not in record.details.get("servers", []):
            raise PhaseOrderError(name, f"committed DnsConfig does not include server {target}")
        if self.topology.servers[target].forwarder and not any(
            rule["holder"] == target and rule["zone"] == zone
            for rule in record.details.get("rules", [])
        ):
            raise PhaseOrderError(name, f"committed DnsConfig holds no rule for {zone} on {target}")

    # ------------------------------------------------------------------
    # History and guards
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _leased(self) -> AsyncIterator[None]:
        if self.lease is None:
            yield
            return
        async with self.lease.hold(self.topology.name, self.holder):
            yield

    def _latest_zone_record(self, zone: str) -> PhaseRecord | None:
        return self.phase_log.latest_of(
            phase_name(ZONE_MIGRATION, zone), phase_name(REVERT_ZONE, zone)
        )

    def _zone_changed_since(self, sequence: int) -> bool:
        return any(
            r.sequence > sequence and r.kind in (ZONE_MIGRATION, REVERT_ZONE)
            for r in self.phase_log.committed()
        )

    def _committed_record(self, kind: str, zone: str | None, name: str) -> PhaseRecord | None:
        """Existing record that makes this request a no-op, if any."""
        if kind in CORE_PHASES:
            latest = self.phase_log.latest(name)
            if latest is None:
                return None
            current = self.topology.snapshot_hash
            if latest.snapshot_hash != current:
                raise PhaseOrderError(
                    name,
                    f"already committed with snapshot {latest.snapshot_hash[:12]}, "
                    f"topology is now {current[:12]}",
                )
            if kind == CONNECTIVITY and latest.details.get("links") != [
                list(link) for link in self.links
            ]:
                return None
            if kind == DNS_CONFIG:
                computation = self.compute_rules()
                if not computation.ok or computation.rule_set.digest != latest.details.get(
                    "digest"
                ):
                    return None
            return latest

        if kind == COMPLETE:
            latest = self.phase_log.latest(COMPLETE)
            if latest is not None and not self._zone_changed_since(latest.sequence):
                return latest
            return None

        if kind == ZONE_MIGRATION and zone is not None:
            latest = self._latest_zone_record(zone)
            target = self.migrations.get(zone)
            if (
                latest is not None
                and latest.is_migration
                and self.topology.zones[zone].authority == target
            ):
                return latest
            return None

        if kind == REVERT_ZONE and zone is not None:
            latest = self._latest_zone_record(zone)
            if latest is not None and latest.is_revert:
                return latest
            return None

        if kind == RETIRE_LEGACY and zone is not None:
            if zone in self.topology.zones and not self.topology.zones[zone].legacy:
                return self.phase_log.latest(name)
            return None

        return None

    def _check_order(self, kind: str, zone: str | None, name: str) -> None:
        if kind in CORE_PHASES:
            for earlier in CORE_PHASES[: CORE_PHASES.index(kind)]:
                if not self.phase_log.is_committed(earlier):
                    raise PhaseOrderError(name, f"{earlier} has not been committed")
            return

        if kind == TEARDOWN:
            if not self.phase_log.is_committed(INFRASTRUCTURE):
                raise PhaseOrderError(name, "nothing has been provisioned")
            return

        if not self.phase_log.is_committed(CUTOVER):
            raise PhaseOrderError(name, f"{CUTOVER} has not been committed")

        if kind == COMPLETE:
            pending = self.pending_migrations()
            if pending:
                raise PhaseOrderError(name, f"migrations not committed: {', '.join(pending)}")
            return

        assert zone is not None
        if zone not in self.topology.zones:
            raise PhaseOrderError(name, f"unknown zone {zone}")
        latest = self._latest_zone_record(zone)

        if kind == ZONE_MIGRATION:
            target = self.migrations.get(zone)
            if target is None:
                raise PhaseOrderError(name, f"zone {zone} is not in the migration plan")
            if self.topology.zones[zone].authority == target:
                raise PhaseOrderError(name, f"{target} is already authoritative for {zone}")
            self.check_dns_config_guard(zone, target)
        elif kind == REVERT_ZONE:
            if latest is None or not latest.is_migration:
                raise PhaseOrderError(name, f"no committed migration of {zone} to revert")
            if not self.topology.zones[zone].legacy:
                raise PhaseOrderError(name, f"{zone} has no legacy authority to revert to")
        elif kind == RETIRE_LEGACY:
            if not self.topology.zones[zone].legacy:
                raise PhaseOrderError(name, f"{zone} has no legacy authority")

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _infrastructure(self, zone: str | None, scope: CancellationScope) -> dict:
        tiers = infrastructure_specs(self.topology)
        scope.begin_pushes()
        handles = await self.builder.realize(tiers)
        return {"handles": [h.to_dict() for h in handles]}

    async def _connectivity(self, zone: str | None, scope: CancellationScope) -> dict:
        for a, b in self.links:
            self.tracker.declare_link(a, b)
        scope.begin_pushes()

        results = await asyncio.gather(
            *(self._connect(a, b) for a, b in self.links), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]

        declared = set(self.links)
        unverified = [e for e in self.tracker.unverified() if e.key in declared]
        if unverified:
            raise LinkNotReachable(unverified[0].segment_a, unverified[0].segment_b)

        return {
            "links": [list(link) for link in self.links],
            "handles": [r.to_dict() for r in results if isinstance(r, ResourceHandle)],
        }

    async def _connect(self, segment_a: str, segment_b: str) -> ResourceHandle:
        handle = await self.builder.realize_link(link_spec(self.topology, segment_a, segment_b))
        self.tracker.mark_established(segment_a, segment_b)
        await confirm_link_with_retry(self.tracker, segment_a, segment_b, self.probe_config)
        return handle

    async def _dns_config(self, zone: str | None, scope: CancellationScope) -> dict:
        rule_set = self.compute_rules().require_complete()

        plan = CutoverPlan()
        for zone_name in sorted(self.topology.zones):
            plan.add_zone(self.topology, self.topology.zones[zone_name].authority, zone_name)
        plan.add_rules(self.topology, rule_set)
        # Segments still use their old resolvers until Cutover, so nothing to probe yet
        await self.controller.apply(plan, [], DNS_CONFIG, scope)

        return {
            "rules": [r.to_dict() for r in rule_set.rules],
            "digest": rule_set.digest,
            "servers": list(rule_set.servers),
            "zones": list(rule_set.zones),
            "verified_links": self.tracker.verified_links(),
        }

    async def _cutover(self, zone: str | None, scope: CancellationScope) -> dict:
        dns_config = self.phase_log.latest(DNS_CONFIG)
        assert dns_config is not None
        rule_set = self.compute_rules().require_complete()
        if rule_set.digest != dns_config.details.get("digest"):
            raise PhaseOrderError(
                CUTOVER, "forwarding rules changed since DnsConfig was committed; re-run DnsConfig"
            )
        unreachable = self.engine.check_default_resolvers(self.topology, self.tracker)
        if unreachable:
            raise NoReachableAuthority(unreachable)

        plan = CutoverPlan()
        plan.add_default_resolvers(self.topology)
        report = await self.controller.apply(plan, build_suite(self.topology), CUTOVER, scope)
        return {
            "resolvers": {s.segment: s.server.id for s in plan.resolver_settings},
            "validation": report.summary(),
            "verified_links": self.tracker.verified_links(),
        }

    async def _zone_migration(self, zone: str | None, scope: CancellationScope) -> dict:
        assert zone is not None
        return await self._switch_authority(
            phase_name(ZONE_MIGRATION, zone), zone, self.migrations[zone], scope, pre_validate=True
        )

    async def _revert_zone(self, zone: str | None, scope: CancellationScope) -> dict:
        assert zone is not None
        target = self.topology.zones[zone].legacy[0]
        # The current state is usually what is being reverted, so it is not re-validated first
        return await self._switch_authority(
            phase_name(REVERT_ZONE, zone), zone, target, scope, pre_validate=False
        )

    async def _switch_authority(
        self,
        name: str,
        zone: str,
        target: str,
        scope: CancellationScope,
        pre_validate: bool,
    ) -> dict:
        """
        Move a zone's authority to `target`.

        Order: validate against the old authority, stage, compute rules on a
        preview, push the zone file to the new authority, push rules, validate
        against the new authority, commit. Any failure discards the staged
        change.
        """
        previous = self.topology.zones[zone].authority
        pre_summary = None
        if pre_validate:
            label = f"{name} pre-switch"
            pre = await self.validator.run(build_suite(self.topology, zones=[zone]), label)
            if not pre.passed:
                raise ValidationFailed(label, pre.failures)
            pre_summary = pre.summary()

        scope.check()
        self.topology.set_zone_authority(zone, target)
        try:
            preview = self.topology.preview_commit(zone)
            rule_set = self.engine.compute(preview, self.tracker).require_complete()
            plan = CutoverPlan()
            plan.add_zone(preview, target, zone)
            plan.add_rules(preview, rule_set)
            post = await self.controller.apply(
                plan, build_suite(preview), f"{name} post-switch", scope
            )
        except BaseException:
            self.topology.discard_zone_authority(zone)
            raise
        self.topology.commit_zone_authority(zone)

        return {
            "zone": zone,
            "from": previous,
            "to": target,
            "rules": [r.to_dict() for r in rule_set.rules],
            "digest": rule_set.digest,
            "pre_validation": pre_summary,
            "post_validation": post.summary(),
            "verified_links": self.tracker.verified_links(),
        }

    async def _retire_legacy(self, zone: str | None, scope: CancellationScope) -> dict:
        assert zone is not None
        preview = self.topology.copy()
        preview.retire_legacy(zone)
        # Fails closed if any server still reaches the zone only through a legacy authority
        rule_set = self.engine.compute(preview, self.tracker).require_complete()

        plan = CutoverPlan()
        plan.add_rules(preview, rule_set)
        report = await self.controller.apply(
            plan, build_suite(preview), phase_name(RETIRE_LEGACY, zone), scope
        )
        retired = self.topology.retire_legacy(zone)
        return {
            "zone": zone,
            "retired": retired,
            "digest": rule_set.digest,
            "validation": report.summary(),
            "verified_links": self.tracker.verified_links(),
        }

    async def _complete(self, zone: str | None, scope: CancellationScope) -> dict:
        report = await self.validator.run(build_suite(self.topology), COMPLETE)
        if not report.passed:
            raise ValidationFailed(COMPLETE, report.failures)
        return {
            "authorities": {
                name: zone.authority for name, zone in sorted(self.topology.zones.items())
            },
            "validation": report.summary(),
        }

    async def _teardown(self, zone: str | None, scope: CancellationScope) -> dict:
        handles: list[ResourceHandle] = []
        seen: set[tuple[str, str]] = set()
        for record in self.phase_log.committed():
            for data in record.details.get("handles", []):
                handle = ResourceHandle.from_dict(data)
                if (handle.kind, handle.name) not in seen:
                    seen.add((handle.kind, handle.name))
                    handles.append(handle)

        scope.begin_pushes()
        deleted = await self.builder.teardown(handles)
        return {"deleted": [h.to_dict() for h in deleted]}

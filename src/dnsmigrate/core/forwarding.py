"""Forwarding Rule Engine - per-server forwarding targets for the current phase.

For every forwarding-capable server S and every zone Z that S is not
authoritative for, exactly one target is chosen:

1. AUTHORITY: Z's committed authority A, if A's segment has a verified edge to
   S's segment (or is the same segment).
2. LEGACY: the most recent previous authority of Z that is still declared,
   reachable, and is not S itself. This keeps names resolvable while a
   migration window is open.
3. UPSTREAM: the external forwarder, only for non-private zones and only if
   an upstream is declared.

Rule 1 always wins over 2, and 2 over 3. If none applies the pair gets a
Diagnostic and the computation fails closed: RuleComputation.require_complete
raises NoReachableAuthority and no partial rule set can be applied. This is
what stops a server from being configured with a target it has no path to.

The engine is pure. It reads the models, never mutates them and never probes,
and its output is sorted so identical inputs give byte-identical rule sets.
"""

import structlog

from ..constants import UPSTREAM
from ..models.rules import Diagnostic, ForwardingRule, RuleComputation, RuleSet, TargetSelection
from ..models.topology import DnsServer, Zone
from .connectivity import ConnectivityTracker
from .topology import TopologyModel

logger = structlog.get_logger(__name__)


class ForwardingRuleEngine:
    """Compute forwarding rules from the topology and connectivity state."""

    def compute(
        self, topology: TopologyModel, connectivity: ConnectivityTracker
    ) -> RuleComputation:
        """
        Compute the rule set for every server/zone pair.

        Args:
            topology: Topology model (committed authorities are used; staged
                changes are ignored)
            connectivity: Connectivity tracker (only verified edges count)

        Returns:
            RuleComputation with the candidate rule set and any diagnostics
        """
        rules: list[ForwardingRule] = []
        diagnostics: list[Diagnostic] = []
        zone_names = sorted(topology.zones)
        server_ids = sorted(topology.servers)

        for server_id in server_ids:
            server = topology.servers[server_id]
            if not server.forwarder:
                continue
            for zone_name in zone_names:
                zone = topology.zones[zone_name]
                if zone.authority == server_id:
                    continue
                rule = self._select_target(topology, connectivity, server, zone)
                if isinstance(rule, Diagnostic):
                    diagnostics.append(rule)
                else:
                    rules.append(rule)

        computation = RuleComputation(
            rule_set=RuleSet(
                rules=tuple(rules), servers=tuple(server_ids), zones=tuple(zone_names)
            ),
            diagnostics=tuple(diagnostics),
        )
        logger.debug(
            "Rules computed",
            rules=len(rules),
            diagnostics=len(diagnostics),
            digest=computation.rule_set.digest,
        )
        return computation

    def _select_target(
        self,
        topology: TopologyModel,
        connectivity: ConnectivityTracker,
        server: DnsServer,
        zone: Zone,
    ) -> ForwardingRule | Diagnostic:
        authority = topology.servers[zone.authority]
        if connectivity.is_reachable(server.segment, authority.segment):
            return ForwardingRule(
                holder=server.id,
                zone=zone.name,
                target=authority.id,
                target_address=authority.address,
                selection=TargetSelection.AUTHORITY,
            )

        for legacy_id in zone.legacy:
            legacy = topology.servers.get(legacy_id)
            if legacy is None or legacy.id == server.id:
                continue
            if connectivity.is_reachable(server.segment, legacy.segment):
                return ForwardingRule(
                    holder=server.id,
                    zone=zone.name,
                    target=legacy.id,
                    target_address=legacy.address,
                    selection=TargetSelection.LEGACY,
                )

        if not zone.private and topology.upstream:
            return ForwardingRule(
                holder=server.id,
                zone=zone.name,
                target=UPSTREAM,
                target_address=topology.upstream,
                selection=TargetSelection.UPSTREAM,
            )

        reason = (
            f"authority {authority.id} in segment {authority.segment} has no verified link "
            f"from {server.segment}"
        )
        if zone.legacy:
            reason += f"; legacy {', '.join(zone.legacy)} unreachable"
        if zone.private:
            reason += "; private zone cannot use upstream"
        elif not topology.upstream:
            reason += "; no upstream forwarder declared"
        return Diagnostic(holder=server.id, subject=zone.name, reason=reason)

    def check_default_resolvers(
        self, topology: TopologyModel, connectivity: ConnectivityTracker
    ) -> list[Diagnostic]:
        """
        Find segments whose default resolver they cannot reach.

        Pointing a segment at such a resolver is the deadlock this tool
        exists to prevent, so Cutover refuses to proceed while any exist.
        """
        diagnostics = []
        for segment_id in sorted(topology.segments):
            resolver_id = topology.segments[segment_id].default_resolver
            if resolver_id is None:
                continue
            resolver = topology.servers[resolver_id]
            if not connectivity.is_reachable(segment_id, resolver.segment):
                diagnostics.append(
                    Diagnostic(
                        holder=segment_id,
                        subject=resolver_id,
                        reason=(
                            f"default resolver {resolver_id} lives in {resolver.segment} "
                            f"with no verified link from {segment_id}"
                        ),
                    )
                )
        return diagnostics

"""Cutover Controller - push a computed configuration, then validate it.

Push order within one apply:

1. Zone files, so a new authority holds the data before anyone forwards to it.
2. Forwarding rules, complete list per server (replace semantics).
3. Segment default resolvers.

Pushes of one stage run concurrently across servers; pushes that touch the
same container are serialized by the shared KeyedLock. Every call goes
through the CallPolicy, so transient failures are retried per call and an
ApplyRejected aborts the apply untouched.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field

import structlog

from ..collaborators.protocols import DnsAdmin
from ..core.topology import TopologyModel
from ..models.rules import ForwardingRule, RuleSet
from ..models.topology import DnsServer, Record
from ..models.validation import ProbeExpectation, ValidationReport
from ..utils.exceptions import ValidationFailed
from ..utils.locking import KeyedLock
from .calls import CallPolicy
from .cancellation import CancellationScope
from .validator import Validator

logger = structlog.get_logger(__name__)

# (container, operation, target, call factory)
_Call = tuple[str, str, str, Callable[[], Awaitable[None]]]


@dataclass(frozen=True)
class ZonePush:
    server: DnsServer
    container: str
    zone: str
    records: tuple[Record, ...]


@dataclass(frozen=True)
class RulePush:
    server: DnsServer
    container: str
    rules: tuple[ForwardingRule, ...]


@dataclass(frozen=True)
class ResolverSetting:
    segment: str
    container: str
    server: DnsServer


@dataclass
class CutoverPlan:
    """Everything one apply pushes, in push order."""

    zone_pushes: list[ZonePush] = field(default_factory=list)
    rule_pushes: list[RulePush] = field(default_factory=list)
    resolver_settings: list[ResolverSetting] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.zone_pushes) + len(self.rule_pushes) + len(self.resolver_settings)

    def add_zone(self, topology: TopologyModel, server_id: str, zone: str) -> None:
        """Push `zone` with its current records (endpoints included) to a server."""
        server = topology.servers[server_id]
        self.zone_pushes.append(
            ZonePush(
                server=server,
                container=topology.server_segment(server_id).container,
                zone=zone,
                records=tuple(topology.zone_records(zone)),
            )
        )

    def add_rules(self, topology: TopologyModel, rule_set: RuleSet) -> None:
        """Push the complete rule list of every forwarding-capable server."""
        for server_id in rule_set.servers:
            server = topology.servers[server_id]
            if not server.forwarder:
                continue
            self.rule_pushes.append(
                RulePush(
                    server=server,
                    container=topology.server_segment(server_id).container,
                    rules=tuple(rule_set.for_holder(server_id)),
                )
            )

    def add_default_resolvers(self, topology: TopologyModel) -> None:
        for segment_id in sorted(topology.segments):
            segment = topology.segments[segment_id]
            if segment.default_resolver is None:
                continue
            self.resolver_settings.append(
                ResolverSetting(
                    segment=segment_id,
                    container=segment.container,
                    server=topology.servers[segment.default_resolver],
                )
            )


class CutoverController:
    """Apply CutoverPlans through the DnsAdmin collaborator."""

    def __init__(
        self,
        dns_admin: DnsAdmin,
        validator: Validator,
        policy: CallPolicy,
        locks: KeyedLock,
        max_concurrency: int = 10,
    ) -> None:
        self.dns_admin = dns_admin
        self.validator = validator
        self.policy = policy
        self.locks = locks
        self.semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def apply(
        self,
        plan: CutoverPlan,
        suite: Sequence[ProbeExpectation],
        label: str,
        scope: CancellationScope | None = None,
    ) -> ValidationReport:
        """
        Push the plan, then run the validation suite.

        Args:
            plan: Pushes to perform
            suite: Expectations that must hold after the pushes
            label: Suite label for reports and errors
            scope: Cancellation scope; pushes start here, so this is the last
                point at which the transition can be cancelled

        Raises:
            PhaseCancelled: Cancelled before the first push
            ApplyRejected: A push was rejected (not retried)
            TransientCollaboratorError: A push kept failing after all retries
            ValidationFailed: A probe did not match its expectation
        """
        if scope is not None:
            scope.begin_pushes()

        logger.info(
            "Applying configuration",
            zones=len(plan.zone_pushes),
            rule_sets=len(plan.rule_pushes),
            resolvers=len(plan.resolver_settings),
        )
        await self._stage(
            (
                p.container,
                "push_zone_file",
                f"{p.server.id}/{p.zone}",
                lambda p=p: self.dns_admin.push_zone_file(p.server, p.zone, list(p.records)),
            )
            for p in plan.zone_pushes
        )
        await self._stage(
            (
                p.container,
                "push_forwarding_rules",
                p.server.id,
                lambda p=p: self.dns_admin.push_forwarding_rules(p.server, list(p.rules)),
            )
            for p in plan.rule_pushes
        )
        await self._stage(
            (
                s.container,
                "set_default_resolver",
                s.segment,
                lambda s=s: self.dns_admin.set_default_resolver(s.segment, s.server),
            )
            for s in plan.resolver_settings
        )

        report = await self.validator.run(suite, label)
        if not report.passed:
            raise ValidationFailed(label, report.failures)
        return report

    async def _stage(self, calls: Iterable[_Call]) -> None:
        tasks = [self._push(*call) for call in calls]
        if not tasks:
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            logger.error("Push failed", failed=len(errors), total=len(tasks), error=str(errors[0]))
            raise errors[0]

    async def _push(
        self,
        container: str,
        operation: str,
        target: str,
        fn: Callable[[], Awaitable[None]],
    ) -> None:
        async with self.semaphore, self.locks(container):
            await self.policy.call(operation, target, fn)
        logger.debug("Pushed", operation=operation, target=target)

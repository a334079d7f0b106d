"""Infrastructure realization through the Provisioner.

Resources are realized in dependency tiers (segments, then DNS servers and
endpoint bindings). Within a tier calls run concurrently, bounded by a
semaphore, and serialized per container by the shared KeyedLock.
"""

import asyncio
from collections.abc import Sequence

import structlog

from ..collaborators.protocols import Provisioner
from ..constants import RESOURCE_DNS_SERVER, RESOURCE_ENDPOINT, RESOURCE_LINK, RESOURCE_SEGMENT
from ..core.topology import TopologyModel
from ..models.connectivity import edge_key
from ..models.resources import ResourceHandle, ResourceSpec
from ..utils.locking import KeyedLock
from .calls import CallPolicy

logger = structlog.get_logger(__name__)


def infrastructure_specs(topology: TopologyModel) -> list[list[ResourceSpec]]:
    """Resource specs for the Infrastructure phase, grouped in dependency tiers."""
    segments = [
        ResourceSpec(
            kind=RESOURCE_SEGMENT,
            name=segment.id,
            container=segment.container,
            properties={"address_range": segment.address_range},
        )
        for segment in (topology.segments[k] for k in sorted(topology.segments))
    ]
    attached = [
        ResourceSpec(
            kind=RESOURCE_DNS_SERVER,
            name=server.id,
            container=topology.segments[server.segment].container,
            properties={
                "segment": server.segment,
                "address": server.address,
                "forwarder": server.forwarder,
            },
        )
        for server in (topology.servers[k] for k in sorted(topology.servers))
    ]
    attached.extend(
        ResourceSpec(
            kind=RESOURCE_ENDPOINT,
            name=binding.fqdn,
            container=topology.segments[binding.segment].container,
            properties={
                "zone": binding.zone,
                "segment": binding.segment,
                "address": binding.address,
            },
        )
        for binding in (topology.bindings[k] for k in sorted(topology.bindings))
    )
    return [tier for tier in (segments, attached) if tier]


def link_spec(topology: TopologyModel, segment_a: str, segment_b: str) -> ResourceSpec:
    """Peering spec for a segment pair. Named after the sorted pair."""
    a, b = edge_key(segment_a, segment_b)
    return ResourceSpec(
        kind=RESOURCE_LINK,
        name=f"{a}--{b}",
        container=topology.segments[a].container,
        properties={
            "a": a,
            "b": b,
            "containers": sorted({topology.segments[a].container, topology.segments[b].container}),
        },
    )


class InfrastructureBuilder:
    """Realize and tear down resources with per-container serialization."""

    def __init__(
        self,
        provisioner: Provisioner,
        policy: CallPolicy,
        locks: KeyedLock,
        max_concurrency: int = 10,
    ) -> None:
        self.provisioner = provisioner
        self.policy = policy
        self.locks = locks
        self.semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def realize(self, tiers: Sequence[Sequence[ResourceSpec]]) -> list[ResourceHandle]:
        """
        Create or converge every spec, tier by tier.

        Returns:
            Handles in creation order (tier order, then spec order)

        Raises:
            CollaboratorError: First failure of a tier, after every call of
                that tier has finished
        """
        handles: list[ResourceHandle] = []
        for tier in tiers:
            results = await asyncio.gather(
                *(self._create(spec) for spec in tier), return_exceptions=True
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            handles.extend(r for r in results if isinstance(r, ResourceHandle))
            if errors:
                logger.error("Provisioning failed", failed=len(errors), realized=len(handles))
                raise errors[0]
        logger.info("Resources realized", count=len(handles))
        return handles

    async def _create(self, spec: ResourceSpec) -> ResourceHandle:
        async with self.semaphore, self.locks(spec.container):
            handle = await self.policy.call(
                "create_or_update",
                f"{spec.kind}/{spec.name}",
                lambda: self.provisioner.create_or_update(spec),
            )
        logger.debug("Resource realized", kind=spec.kind, name=spec.name, id=handle.resource_id)
        return handle

    async def realize_link(self, spec: ResourceSpec) -> ResourceHandle:
        """Create a peering, holding the locks of both containers."""
        containers = spec.properties.get("containers") or [spec.container]
        async with self.semaphore, self.locks.acquire_many(containers):
            return await self.policy.call(
                "create_or_update",
                f"{spec.kind}/{spec.name}",
                lambda: self.provisioner.create_or_update(spec),
            )

    async def teardown(self, handles: Sequence[ResourceHandle]) -> list[ResourceHandle]:
        """
        Delete handles in reverse creation order, one at a time.

        Returns:
            Handles that were deleted
        """
        deleted = []
        for handle in reversed(handles):
            async with self.locks(handle.container):
                await self.policy.call(
                    "delete",
                    f"{handle.kind}/{handle.name}",
                    lambda h=handle: self.provisioner.delete(h),
                )
            deleted.append(handle)
            logger.debug("Resource deleted", kind=handle.kind, name=handle.name)
        logger.info("Resources deleted", count=len(deleted))
        return deleted

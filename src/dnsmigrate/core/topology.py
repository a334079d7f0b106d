"""Topology Model - segments, DNS servers, zones and endpoint bindings.

All mutations are validated before anything is changed. A rejected mutation
raises TopologyInvariantViolation and leaves the model exactly as it was.

Invariants:
- Segment ids are unique and address ranges do not overlap.
- A DnsServer belongs to exactly one existing segment and its address lies
  inside that segment's range.
- Every zone has exactly one committed authority. An authority change is
  staged first (set_zone_authority) and becomes effective on commit; a second
  change cannot be staged while one is pending.
- An endpoint binding's record name is unique across declared records and
  other bindings.
"""

import copy
import hashlib
import json
from dataclasses import dataclass
from ipaddress import ip_address, ip_network
from typing import Any

import structlog

from ..models.topology import DnsServer, PrivateEndpointBinding, Record, Segment, Zone
from ..utils.exceptions import TopologyInvariantViolation

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TopologySnapshot:
    """Canonical content of the model plus its SHA-256 hash."""

    content: str
    hash: str


class TopologyModel:
    """
    In-memory graph of segments, zones and DNS servers.

    Connectivity is intentionally not part of this model (see
    core/connectivity.py), so the snapshot hash only changes when the declared
    topology or zone authority changes.
    """

    def __init__(self, name: str = "default", upstream: str | None = None) -> None:
        self.name = name
        self.upstream = upstream
        self.segments: dict[str, Segment] = {}
        self.servers: dict[str, DnsServer] = {}
        self.zones: dict[str, Zone] = {}
        self.bindings: dict[str, PrivateEndpointBinding] = {}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_segment(
        self,
        segment_id: str,
        address_range: str,
        container: str | None = None,
        default_resolver: str | None = None,
    ) -> Segment:
        """
        Declare a network segment.

        Raises:
            TopologyInvariantViolation: Duplicate id, invalid or overlapping range.
        """
        if segment_id in self.segments:
            raise TopologyInvariantViolation(
                f"Segment {segment_id} already exists", entity=segment_id
            )
        try:
            network = ip_network(address_range, strict=True)
        except ValueError as e:
            raise TopologyInvariantViolation(
                f"Segment {segment_id} has invalid address range {address_range}: {e}",
                entity=segment_id,
            ) from e

        for other in self.segments.values():
            if ip_network(other.address_range).overlaps(network):
                raise TopologyInvariantViolation(
                    f"Segment {segment_id} range {address_range} overlaps "
                    f"{other.id} ({other.address_range})",
                    entity=segment_id,
                )

        segment = Segment(
            id=segment_id,
            address_range=str(network),
            container=container or segment_id,
            default_resolver=default_resolver,
        )
        self.segments[segment_id] = segment
        logger.debug("Segment added", segment=segment_id, range=segment.address_range)
        return segment

    def add_dns_server(
        self, server_id: str, segment_id: str, address: str, forwarder: bool = True
    ) -> DnsServer:
        """
        Declare a DNS server bound to one segment.

        Raises:
            TopologyInvariantViolation: Duplicate id, unknown segment, address
                outside the segment's range.
        """
        if server_id in self.servers:
            existing = self.servers[server_id]
            raise TopologyInvariantViolation(
                f"DNS server {server_id} already bound to segment {existing.segment}",
                entity=server_id,
            )
        segment = self.segments.get(segment_id)
        if segment is None:
            raise TopologyInvariantViolation(
                f"DNS server {server_id} references unknown segment {segment_id}",
                entity=server_id,
            )
        self._require_in_range(server_id, address, segment)

        server = DnsServer(id=server_id, segment=segment_id, address=address, forwarder=forwarder)
        self.servers[server_id] = server
        segment.servers.add(server_id)
        logger.debug("DNS server added", server=server_id, segment=segment_id)
        return server

    def add_zone(
        self,
        name: str,
        authority: str,
        private: bool = True,
        records: list[Record] | None = None,
        probe: str | None = None,
    ) -> Zone:
        """
        Declare a zone with its initial authority.

        Raises:
            TopologyInvariantViolation: Duplicate zone, unknown authority,
                record outside the zone.
        """
        if name in self.zones:
            raise TopologyInvariantViolation(
                f"Zone {name} already has authority {self.zones[name].authority}", entity=name
            )
        if authority not in self.servers:
            raise TopologyInvariantViolation(
                f"Zone {name} references unknown authority {authority}", entity=name
            )
        records = list(records or [])
        for record in records:
            if not _in_zone(record.name, name):
                raise TopologyInvariantViolation(
                    f"Record {record.name} is outside zone {name}", entity=name
                )

        zone = Zone(name=name, authority=authority, private=private, records=records, probe=probe)
        self.zones[name] = zone
        logger.debug("Zone added", zone=name, authority=authority)
        return zone

    def set_zone_authority(self, zone_name: str, server_id: str) -> None:
        """
        Stage an authority change for a zone.

        The change has no effect on rule computation until it is committed.

        Raises:
            TopologyInvariantViolation: Unknown zone or server, the server is
                already authoritative, or another change is already staged.
        """
        zone = self._require_zone(zone_name)
        if server_id not in self.servers:
            raise TopologyInvariantViolation(
                f"Zone {zone_name} cannot move to unknown server {server_id}", entity=zone_name
            )
        if zone.pending_authority is not None:
            raise TopologyInvariantViolation(
                f"Zone {zone_name} already has a pending authority change to "
                f"{zone.pending_authority}; commit or discard it first",
                entity=zone_name,
            )
        if zone.authority == server_id:
            raise TopologyInvariantViolation(
                f"Server {server_id} is already authoritative for {zone_name}", entity=zone_name
            )

        zone.pending_authority = server_id
        logger.info("Zone authority staged", zone=zone_name, current=zone.authority, to=server_id)

    def commit_zone_authority(self, zone_name: str) -> tuple[str, str]:
        """
        Make the staged authority effective.

        The previous authority becomes the most recent legacy authority.

        Returns:
            (previous authority, new authority)
        """
        zone = self._require_zone(zone_name)
        if zone.pending_authority is None:
            raise TopologyInvariantViolation(
                f"Zone {zone_name} has no pending authority change", entity=zone_name
            )
        previous, new = zone.authority, zone.pending_authority
        zone.legacy = [previous] + [s for s in zone.legacy if s not in (previous, new)]
        zone.authority = new
        zone.pending_authority = None
        logger.info("Zone authority committed", zone=zone_name, previous=previous, authority=new)
        return previous, new

    def discard_zone_authority(self, zone_name: str) -> None:
        """Drop a staged authority change, if any."""
        zone = self._require_zone(zone_name)
        if zone.pending_authority is not None:
            logger.info("Zone authority discarded", zone=zone_name, to=zone.pending_authority)
        zone.pending_authority = None

    def retire_legacy(self, zone_name: str) -> list[str]:
        """Forget previous authorities of a zone. Returns what was removed."""
        zone = self._require_zone(zone_name)
        removed, zone.legacy = zone.legacy, []
        return removed

    def add_private_endpoint_binding(
        self, name: str, zone_name: str, segment_id: str, address: str
    ) -> PrivateEndpointBinding:
        """
        Attach a named resource to a private address and publish it in a zone.

        Raises:
            TopologyInvariantViolation: Unknown zone or segment, address outside
                the segment, or the record name is already taken.
        """
        self._require_zone(zone_name)
        segment = self.segments.get(segment_id)
        if segment is None:
            raise TopologyInvariantViolation(
                f"Endpoint {name} references unknown segment {segment_id}", entity=name
            )
        self._require_in_range(name, address, segment)

        binding = PrivateEndpointBinding(
            name=name, zone=zone_name, segment=segment_id, address=address
        )
        if binding.fqdn in self.bindings:
            raise TopologyInvariantViolation(
                f"Endpoint record {binding.fqdn} already bound", entity=binding.fqdn
            )
        if any(r.name == binding.fqdn for r in self.zones[zone_name].records):
            raise TopologyInvariantViolation(
                f"Endpoint record {binding.fqdn} collides with a declared record",
                entity=binding.fqdn,
            )

        self.bindings[binding.fqdn] = binding
        logger.debug("Endpoint bound", fqdn=binding.fqdn, address=address)
        return binding

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check cross references that can only be verified once the model is built.

        Raises:
            TopologyInvariantViolation: A segment's default resolver is unknown.
        """
        for segment in self.segments.values():
            resolver = segment.default_resolver
            if resolver is not None and resolver not in self.servers:
                raise TopologyInvariantViolation(
                    f"Segment {segment.id} default resolver {resolver} is not a declared server",
                    entity=segment.id,
                )

    def server_segment(self, server_id: str) -> Segment:
        return self.segments[self.servers[server_id].segment]

    def authoritative_zones(self, server_id: str) -> list[str]:
        return sorted(z.name for z in self.zones.values() if z.authority == server_id)

    def zone_records(self, zone_name: str) -> list[Record]:
        """Declared records plus synthetic endpoint records, sorted."""
        zone = self._require_zone(zone_name)
        records = list(zone.records)
        records.extend(b.to_record() for b in self.bindings.values() if b.zone == zone_name)
        return sorted(records, key=lambda r: (r.name, r.type, r.address))

    def probe_name(self, zone_name: str) -> str | None:
        zone = self._require_zone(zone_name)
        if zone.probe:
            return zone.probe
        records = self.zone_records(zone_name)
        return records[0].name if records else None

    def lookup(self, name: str) -> Record | None:
        """Find the record for a name in the zone that contains it."""
        zone = self.zone_for_name(name)
        if zone is None:
            return None
        for record in self.zone_records(zone.name):
            if record.name == name:
                return record
        return None

    def zone_for_name(self, name: str) -> Zone | None:
        """Longest-suffix zone match."""
        matches = [z for z in self.zones.values() if _in_zone(name, z.name)]
        if not matches:
            return None
        return max(matches, key=lambda z: len(z.name))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "upstream": self.upstream,
            "segments": [self.segments[k].to_dict() for k in sorted(self.segments)],
            "servers": [self.servers[k].to_dict() for k in sorted(self.servers)],
            "zones": [self.zones[k].to_dict() for k in sorted(self.zones)],
            "bindings": [self.bindings[k].to_dict() for k in sorted(self.bindings)],
        }

    def snapshot(self) -> TopologySnapshot:
        """
        Deterministic content hash of the committed topology.

        Staged authority changes are excluded: they are not committed state.
        """
        content = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return TopologySnapshot(
            content=content, hash=hashlib.sha256(content.encode("utf-8")).hexdigest()
        )

    @property
    def snapshot_hash(self) -> str:
        return self.snapshot().hash

    def copy(self) -> "TopologyModel":
        return copy.deepcopy(self)

    def preview_commit(self, zone_name: str) -> "TopologyModel":
        """Copy of the model with the staged change for a zone committed."""
        preview = self.copy()
        preview.commit_zone_authority(zone_name)
        return preview

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_zone(self, zone_name: str) -> Zone:
        zone = self.zones.get(zone_name)
        if zone is None:
            raise TopologyInvariantViolation(f"Unknown zone {zone_name}", entity=zone_name)
        return zone

    @staticmethod
    def _require_in_range(entity: str, address: str, segment: Segment) -> None:
        try:
            inside = ip_address(address) in ip_network(segment.address_range)
        except ValueError as e:
            raise TopologyInvariantViolation(
                f"{entity} has invalid address {address}", entity=entity
            ) from e
        if not inside:
            raise TopologyInvariantViolation(
                f"{entity} address {address} is outside segment {segment.id} "
                f"({segment.address_range})",
                entity=entity,
            )


def _in_zone(name: str, zone: str) -> bool:
    return name == zone or name.endswith(f".{zone}")

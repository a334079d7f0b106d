"""Topology entities: segments, DNS servers, zones and endpoint bindings."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Record:
    """
    A single resource record inside a zone.

    Attributes:
        name: Fully qualified record name (e.g. "vm1.onprem.pvt")
        address: Record data, an IP address for A/AAAA records
        type: Record type
    """

    name: str
    address: str
    type: str = "A"

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "address": self.address}


@dataclass
class Segment:
    """
    A network partition (on-prem, hub, spoke-N, managed service network).

    Attributes:
        id: Segment identifier
        address_range: CIDR of the segment
        container: Resource-group-equivalent container that owns the segment
        default_resolver: DnsServer id the segment's clients use after Cutover
        servers: Ids of DnsServers hosted in this segment
    """

    id: str
    address_range: str
    container: str
    default_resolver: str | None = None
    servers: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "address_range": self.address_range,
            "container": self.container,
            "default_resolver": self.default_resolver,
            "servers": sorted(self.servers),
        }


@dataclass
class DnsServer:
    """
    A resolver instance bound to exactly one segment.

    Attributes:
        id: Server identifier
        segment: Id of the hosting segment
        address: Listening address inside the segment's range
        forwarder: False for managed authoritative-only services that cannot
            hold forwarding rules
    """

    id: str
    segment: str
    address: str
    forwarder: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "segment": self.segment,
            "address": self.address,
            "forwarder": self.forwarder,
        }


@dataclass
class Zone:
    """
    A DNS namespace and its authority.

    Attributes:
        name: Zone name (e.g. "onprem.pvt")
        authority: Id of the committed authoritative DnsServer
        private: Private zones are never resolvable through the upstream forwarder
        records: Hand-declared records
        probe: Name used by validation probes (defaults to the first record)
        legacy: Previously authoritative servers, most recent first
        pending_authority: Staged authority change awaiting commit
    """

    name: str
    authority: str
    private: bool = True
    records: list[Record] = field(default_factory=list)
    probe: str | None = None
    legacy: list[str] = field(default_factory=list)
    pending_authority: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "authority": self.authority,
            "private": self.private,
            "probe": self.probe,
            "legacy": list(self.legacy),
            "records": [r.to_dict() for r in sorted(self.records, key=_record_key)],
        }


@dataclass(frozen=True)
class PrivateEndpointBinding:
    """
    A named network-exposed resource attached to a private IP in a segment.

    The binding contributes one synthetic record, `<name>.<zone>`, to whichever
    server is authoritative for `zone`. The record is derived, never copied,
    so an authority migration re-points it instead of duplicating it.
    """

    name: str
    zone: str
    segment: str
    address: str

    @property
    def fqdn(self) -> str:
        return f"{self.name}.{self.zone}"

    def to_record(self) -> Record:
        return Record(name=self.fqdn, address=self.address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "zone": self.zone,
            "segment": self.segment,
            "address": self.address,
        }


def _record_key(record: Record) -> tuple[str, str, str]:
    return (record.name, record.type, record.address)

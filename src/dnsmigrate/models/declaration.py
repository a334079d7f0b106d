"""Declarative topology input with Pydantic v2 models.

The declaration is the only hand-authored input. Together with the phase log it
is enough to rebuild the Topology Model and the Connectivity Tracker.

Example:
    name: hub-spoke
    segments:
      - {id: onprem, address_range: 10.0.0.0/24, default_resolver: onprem-dns}
      - {id: hub, address_range: 10.1.0.0/24, default_resolver: hub-dns}
    servers:
      - {id: onprem-dns, segment: onprem, address: 10.0.0.4}
      - {id: hub-dns, segment: hub, address: 10.1.0.4}
    zones:
      - name: onprem.pvt
        authority: onprem-dns
        records: [{name: vm1.onprem.pvt, address: 10.0.0.10}]
    links:
      - {a: onprem, b: hub}
"""

from ipaddress import ip_address, ip_network
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def normalize_dns_name(v: Any) -> Any:
    """
    Lower-case a DNS name and strip whitespace and the trailing root dot.

    "Blob.Example." and " blob.example" both become "blob.example".
    """
    if isinstance(v, str):
        return v.strip().rstrip(".").lower()
    return v


def strip_whitespace(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip()
    return v


DnsName = Annotated[str, BeforeValidator(normalize_dns_name)]
Identifier = Annotated[str, BeforeValidator(strip_whitespace), Field(min_length=1)]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RecordDecl(_Strict):
    name: DnsName
    address: str
    type: str = "A"

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        try:
            ip_address(v)
        except ValueError as e:
            raise ValueError(f"Invalid record address: {v}") from e
        return v


class SegmentDecl(_Strict):
    id: Identifier
    address_range: str
    container: str | None = None
    default_resolver: str | None = None

    @field_validator("address_range")
    @classmethod
    def validate_range(cls, v: str) -> str:
        try:
            return str(ip_network(v.strip(), strict=True))
        except ValueError as e:
            raise ValueError(f"Invalid address range: {v}") from e


class ServerDecl(_Strict):
    id: Identifier
    segment: Identifier
    address: str
    forwarder: bool = True

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        try:
            ip_address(v.strip())
        except ValueError as e:
            raise ValueError(f"Invalid server address: {v}") from e
        return v.strip()


class ZoneDecl(_Strict):
    name: DnsName
    authority: Identifier
    private: bool = True
    probe: DnsName | None = None
    records: list[RecordDecl] = Field(default_factory=list)

    @model_validator(mode="after")
    def records_inside_zone(self) -> "ZoneDecl":
        for record in self.records:
            if record.name != self.name and not record.name.endswith(f".{self.name}"):
                raise ValueError(f"Record {record.name} is outside zone {self.name}")
        return self


class LinkDecl(_Strict):
    a: Identifier
    b: Identifier

    @model_validator(mode="after")
    def distinct_segments(self) -> "LinkDecl":
        if self.a == self.b:
            raise ValueError(f"Link endpoints must differ: {self.a}")
        return self


class EndpointDecl(_Strict):
    name: DnsName
    zone: DnsName
    segment: Identifier
    address: str


class MigrationDecl(_Strict):
    zone: DnsName
    to: Identifier


class TopologyDeclaration(_Strict):
    """Root of a topology declaration file."""

    name: Identifier
    upstream: str | None = None
    segments: list[SegmentDecl] = Field(default_factory=list)
    servers: list[ServerDecl] = Field(default_factory=list)
    zones: list[ZoneDecl] = Field(default_factory=list)
    links: list[LinkDecl] = Field(default_factory=list)
    endpoints: list[EndpointDecl] = Field(default_factory=list)
    migrations: list[MigrationDecl] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_migrations(self) -> "TopologyDeclaration":
        seen: set[str] = set()
        for migration in self.migrations:
            if migration.zone in seen:
                raise ValueError(f"Zone {migration.zone} is migrated more than once")
            seen.add(migration.zone)
        return self

    def link_pairs(self) -> list[tuple[str, str]]:
        """Declared links as sorted, de-duplicated pairs."""
        pairs = {(min(link.a, link.b), max(link.a, link.b)) for link in self.links}
        return sorted(pairs)

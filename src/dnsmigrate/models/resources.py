"""Provisioner request and response types."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ResourceSpec:
    """
    Declarative description of a resource to realize.

    Attributes:
        kind: Resource kind (segment, dns_server, private_endpoint, link)
        name: Resource name, unique per kind
        container: Container the resource lives in
        properties: Kind-specific properties
    """

    kind: str
    name: str
    container: str
    properties: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)


@dataclass(frozen=True)
class ResourceHandle:
    """Reference to a realized resource, as returned by the Provisioner."""

    kind: str
    name: str
    container: str
    resource_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind,
            "name": self.name,
            "container": self.container,
            "resource_id": self.resource_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "ResourceHandle":
        return cls(
            kind=data["kind"],
            name=data["name"],
            container=data["container"],
            resource_id=data["resource_id"],
        )

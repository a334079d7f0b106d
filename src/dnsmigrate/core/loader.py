"""Declaration loader - YAML file to a validated declaration and Topology Model."""

from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from ..models.declaration import TopologyDeclaration
from ..models.topology import Record
from ..utils.exceptions import DeclarationError
from .topology import TopologyModel

logger = structlog.get_logger(__name__)


def load_declaration(path: Path) -> TopologyDeclaration:
    """
    Load and validate a topology declaration.

    Raises:
        DeclarationError: File missing, invalid YAML, or schema violations.
    """
    if not path.exists():
        raise DeclarationError("Declaration file not found", path=str(path))
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DeclarationError(f"Invalid YAML: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise DeclarationError(
            f"Expected a mapping at the top level, got {type(data).__name__}", path=str(path)
        )
    return parse_declaration(data, source=str(path))


def parse_declaration(data: dict, source: str | None = None) -> TopologyDeclaration:
    """Validate an already-parsed declaration mapping."""
    try:
        return TopologyDeclaration.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DeclarationError(problems, path=source) from e


def build_topology(declaration: TopologyDeclaration) -> TopologyModel:
    """
    Build a Topology Model from a declaration.

    Raises:
        TopologyInvariantViolation: If the declaration breaks a model invariant.
    """
    topology = TopologyModel(name=declaration.name, upstream=declaration.upstream)
    for segment in declaration.segments:
        topology.add_segment(
            segment.id,
            segment.address_range,
            container=segment.container,
            default_resolver=segment.default_resolver,
        )
    for server in declaration.servers:
        topology.add_dns_server(
            server.id, server.segment, server.address, forwarder=server.forwarder
        )
    for zone in declaration.zones:
        topology.add_zone(
            zone.name,
            zone.authority,
            private=zone.private,
            records=[Record(name=r.name, address=r.address, type=r.type) for r in zone.records],
            probe=zone.probe,
        )
    for endpoint in declaration.endpoints:
        topology.add_private_endpoint_binding(
            endpoint.name, endpoint.zone, endpoint.segment, endpoint.address
        )
    topology.validate()

    logger.info(
        "Topology built",
        topology=topology.name,
        segments=len(topology.segments),
        servers=len(topology.servers),
        zones=len(topology.zones),
        snapshot=topology.snapshot_hash[:12],
    )
    return topology

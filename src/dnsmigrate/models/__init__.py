"""Data models for the DNS migration orchestrator."""

from .connectivity import ConnectivityEdge, EdgeStatus, edge_key
from .declaration import TopologyDeclaration
from .phases import PhaseRecord
from .resources import ResourceHandle, ResourceSpec
from .rules import Diagnostic, ForwardingRule, RuleComputation, RuleSet, TargetSelection
from .topology import DnsServer, PrivateEndpointBinding, Record, Segment, Zone
from .validation import ProbeExpectation, ProbeResult, Resolution, ValidationReport

__all__ = [
    # Topology
    "Segment",
    "DnsServer",
    "Zone",
    "Record",
    "PrivateEndpointBinding",
    # Connectivity
    "ConnectivityEdge",
    "EdgeStatus",
    "edge_key",
    # Rules
    "ForwardingRule",
    "TargetSelection",
    "Diagnostic",
    "RuleSet",
    "RuleComputation",
    # Phases
    "PhaseRecord",
    # Provisioning
    "ResourceSpec",
    "ResourceHandle",
    # Validation
    "Resolution",
    "ProbeExpectation",
    "ProbeResult",
    "ValidationReport",
    # Input
    "TopologyDeclaration",
]

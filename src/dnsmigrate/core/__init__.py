"""Core models and pure computations."""

from .connectivity import ConnectivityTracker
from .forwarding import ForwardingRuleEngine
from .loader import build_topology, load_declaration, parse_declaration
from .topology import TopologyModel, TopologySnapshot

__all__ = [
    "TopologyModel",
    "TopologySnapshot",
    "ConnectivityTracker",
    "ForwardingRuleEngine",
    "load_declaration",
    "parse_declaration",
    "build_topology",
]

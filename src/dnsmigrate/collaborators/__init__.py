"""External collaborators: protocols and adapters."""

from .http import HttpControlPlane
from .protocols import DnsAdmin, LinkProbe, Provisioner, Resolver
from .simulated import SimulatedNetwork

__all__ = [
    "Provisioner",
    "LinkProbe",
    "DnsAdmin",
    "Resolver",
    "SimulatedNetwork",
    "HttpControlPlane",
]

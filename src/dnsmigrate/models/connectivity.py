"""Connectivity edge models."""

from dataclasses import dataclass
from enum import Enum


class EdgeStatus(str, Enum):
    """Lifecycle of a connectivity edge."""

    PLANNED = "planned"  # Declared, no confirmed data path
    ESTABLISHED = "established"  # Link reported up by the provider
    VERIFIED = "verified"  # Bidirectional probe succeeded


def edge_key(segment_a: str, segment_b: str) -> tuple[str, str]:
    """Normalize an unordered segment pair."""
    return (segment_a, segment_b) if segment_a <= segment_b else (segment_b, segment_a)


@dataclass
class ConnectivityEdge:
    """
    An unordered pair of segments plus the state of the link between them.

    Attributes:
        segment_a: Lexically smaller segment id
        segment_b: Lexically larger segment id
        status: Current edge status
        attempts: Number of probe attempts made so far
    """

    segment_a: str
    segment_b: str
    status: EdgeStatus = EdgeStatus.PLANNED
    attempts: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.segment_a, self.segment_b)

    @property
    def is_verified(self) -> bool:
        return self.status == EdgeStatus.VERIFIED

    def __str__(self) -> str:
        return f"{self.segment_a}<->{self.segment_b}"

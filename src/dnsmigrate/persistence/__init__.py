"""Durable orchestrator state."""

from .phase_log import PhaseLog, PhaseLogCorrupted

__all__ = ["PhaseLog", "PhaseLogCorrupted"]

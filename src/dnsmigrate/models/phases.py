"""PhaseRecord: one line of the append-only phase log."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..constants import REVERT_ZONE, ZONE_MIGRATION, split_phase_name


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class PhaseRecord(BaseModel):
    """
    An immutable entry of the phase log.

    Attributes:
        sequence: Position in the log (0-based, strictly increasing)
        phase: Record name, e.g. "DnsConfig" or "ZoneMigration:blob.example"
        timestamp: ISO-8601 timestamp
        snapshot_hash: Topology snapshot hash at commit time
        passed: True for a commit, False for a failed attempt (audit only)
        diagnostics: Human-readable failure details
        details: Phase-specific payload (rules, handles, authority moves)
    """

    model_config = ConfigDict(frozen=True)

    sequence: int
    phase: str
    timestamp: str = Field(default_factory=utc_now_iso)
    snapshot_hash: str
    passed: bool
    diagnostics: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def kind(self) -> str:
        """Phase without the zone suffix."""
        return split_phase_name(self.phase)[0]

    @property
    def zone(self) -> str | None:
        return split_phase_name(self.phase)[1]

    @property
    def is_revert(self) -> bool:
        return self.kind == REVERT_ZONE

    @property
    def is_migration(self) -> bool:
        return self.kind == ZONE_MIGRATION

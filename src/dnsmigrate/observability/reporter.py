"""Migration Report Generator.

Summarizes the phase log, the current zone authorities and the run metrics as
a JSON document for change reviews.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import structlog

from ..constants import COMPLETE, TEARDOWN
from ..models.phases import utc_now_iso
from ..persistence.phase_log import PhaseLog

logger = structlog.get_logger(__name__)


@dataclass
class MigrationReport:
    """
    Structured report data for one topology.

    Attributes:
        topology: Topology name
        status: not_started, in_progress, failed, complete or torn_down
        generated_at: Report timestamp
        current_phase: Latest committed record name
        snapshot_hash: Snapshot hash of the latest committed record
        committed_phases: Committed record names, in order
        failed_attempts: Count of failed (audit-only) records
        zones: Zone name -> {authority, legacy}
        errors: Failed attempts with their diagnostics
        metrics: Collector summary of the current process
    """

    topology: str
    status: str
    generated_at: str
    current_phase: str | None
    snapshot_hash: str | None
    committed_phases: list[str] = field(default_factory=list)
    failed_attempts: int = 0
    zones: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)


class ReportGenerator:
    """Generate migration reports from a phase log."""

    def __init__(self, phase_log: PhaseLog) -> None:
        self.phase_log = phase_log

    def generate_report(
        self,
        topology: str,
        zones: dict[str, dict[str, Any]] | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> MigrationReport:
        """
        Build a report object.

        Args:
            topology: Topology name
            zones: Current authority map, as produced by the state machine
            metrics: MetricsCollector summary

        Returns:
            MigrationReport object
        """
        records = self.phase_log.records()
        committed = [r for r in records if r.passed]
        failures = [r for r in records if not r.passed]
        latest = committed[-1] if committed else None

        if not records:
            status = "not_started"
        elif latest is not None and latest.phase == TEARDOWN:
            status = "torn_down"
        elif not records[-1].passed:
            status = "failed"
        elif any(r.phase == COMPLETE for r in committed):
            status = "complete"
        else:
            status = "in_progress"

        errors = [
            {
                "sequence": r.sequence,
                "phase": r.phase,
                "timestamp": r.timestamp,
                "diagnostics": list(r.diagnostics),
            }
            for r in failures
        ]

        return MigrationReport(
            topology=topology,
            status=status,
            generated_at=utc_now_iso(),
            current_phase=latest.phase if latest else None,
            snapshot_hash=latest.snapshot_hash if latest else None,
            committed_phases=[r.phase for r in committed],
            failed_attempts=len(failures),
            zones=dict(zones or {}),
            errors=errors,
            metrics=dict(metrics or {}),
        )

    def write_json_report(self, report: MigrationReport, output_path: Path) -> None:
        """
        Write report as JSON.

        Args:
            report: Migration report
            output_path: Output file path
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            json.dump(asdict(report), f, indent=2, sort_keys=True)

        logger.info("JSON report written", path=str(output_path))

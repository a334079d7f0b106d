"""Append-only phase log.

Purpose:
-------
The PhaseLog is the only durable state the orchestrator owns. Every phase
transition attempt appends exactly one PhaseRecord; records are never
rewritten or removed. Passing records are commits, failing records are kept
for audit only.

File Format:
-----------
One JSON object per line (JSON Lines), keys sorted, so the log can be diffed
and reviewed like any other text file:

```
{"details":{...},"diagnostics":[],"passed":true,"phase":"Infrastructure","sequence":0,...}
{"details":{...},"diagnostics":["..."],"passed":false,"phase":"DnsConfig","sequence":1,...}
```

Durability:
----------
Each append is flushed and fsync'ed before the call returns, so a record that
was reported as committed survives a crash of the orchestrator.

Usage:
-----
```python
log = PhaseLog(".dnsmigrate/phases.jsonl")
record = log.append("Infrastructure", snapshot_hash=h, passed=True, details={...})
log.is_committed("Infrastructure")
```
"""

import json
import os
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog
from pydantic import ValidationError

from ..models.phases import PhaseRecord

logger = structlog.get_logger(__name__)


class PhaseLogCorrupted(ValueError):
    """Raised when an existing log file cannot be parsed."""


class PhaseLog:
    """
    JSON Lines phase log.

    Features:
    - Append-only, one record per line
    - fsync on every append
    - In-memory mode (path=None) for rehearsals and tests
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """
        Initialize PhaseLog.

        Args:
            path: Log file path. None keeps the log in memory only.
        """
        self.path = Path(path) if path is not None else None
        self._records: list[PhaseRecord] = []
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                self._records = self._load()
        logger.debug(
            "Phase log opened", path=str(self.path) if self.path else None, records=len(self)
        )

    def _load(self) -> list[PhaseRecord]:
        assert self.path is not None
        records = []
        with open(self.path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(PhaseRecord.model_validate_json(line))
                except ValidationError as e:
                    raise PhaseLogCorrupted(f"{self.path}:{line_no}: {e}") from e
        for expected, record in enumerate(records):
            if record.sequence != expected:
                raise PhaseLogCorrupted(
                    f"{self.path}: record {expected} has sequence {record.sequence}"
                )
        return records

    def append(
        self,
        phase: str,
        snapshot_hash: str,
        passed: bool,
        diagnostics: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> PhaseRecord:
        """
        Append a record and persist it.

        Args:
            phase: Record name
            snapshot_hash: Topology snapshot hash at the time of the attempt
            passed: Whether the transition committed
            diagnostics: Failure details
            details: Phase-specific payload

        Returns:
            The appended PhaseRecord
        """
        record = PhaseRecord(
            sequence=len(self._records),
            phase=phase,
            snapshot_hash=snapshot_hash,
            passed=passed,
            diagnostics=list(diagnostics or []),
            details=dict(details or {}),
        )
        if self.path is not None:
            line = json.dumps(record.model_dump(mode="json"), sort_keys=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())
        self._records.append(record)
        logger.debug("Phase recorded", phase=phase, passed=passed, sequence=record.sequence)
        return record

    def records(self) -> list[PhaseRecord]:
        """All records, failed attempts included, in append order."""
        return list(self._records)

    def committed(self) -> list[PhaseRecord]:
        """Passing records only."""
        return [r for r in self._records if r.passed]

    def latest(self, phase: str) -> PhaseRecord | None:
        """Most recent passing record with exactly this name."""
        for record in reversed(self._records):
            if record.passed and record.phase == phase:
                return record
        return None

    def latest_of(self, *phases: str) -> PhaseRecord | None:
        """Most recent passing record whose name is any of `phases`."""
        wanted = set(phases)
        for record in reversed(self._records):
            if record.passed and record.phase in wanted:
                return record
        return None

    def is_committed(self, phase: str) -> bool:
        return self.latest(phase) is not None

    def __len__(self) -> int:
        return len(self._records)

    def close(self) -> None:
        """Nothing is held open between appends; kept for symmetry with `with`."""
        logger.debug("Phase log closed", records=len(self._records))

    def __enter__(self) -> "PhaseLog":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

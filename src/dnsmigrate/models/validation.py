"""Validation probe models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Resolution:
    """Typed answer of a resolution probe."""

    address: str | None
    authoritative: bool


@dataclass(frozen=True)
class ProbeExpectation:
    """
    One entry of a validation suite.

    Attributes:
        segment: Segment the probe is issued from
        name: Name to resolve
        expected_address: Address the name must resolve to
        expected_authoritative: Whether the segment's resolver must answer
            authoritatively
    """

    segment: str
    name: str
    expected_address: str
    expected_authoritative: bool

    def __str__(self) -> str:
        auth = "authoritative" if self.expected_authoritative else "forwarded"
        return f"{self.segment}:{self.name} -> {self.expected_address} ({auth})"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe, including what was actually observed."""

    expectation: ProbeExpectation
    actual: Resolution | None
    error: str | None = None

    @property
    def passed(self) -> bool:
        if self.actual is None:
            return False
        return (
            self.actual.address == self.expectation.expected_address
            and self.actual.authoritative == self.expectation.expected_authoritative
        )

    def __str__(self) -> str:
        exp = self.expectation
        if self.actual is None:
            observed = f"error: {self.error}"
        else:
            observed = f"{self.actual.address} (authoritative={self.actual.authoritative})"
        return (
            f"segment={exp.segment} name={exp.name} "
            f"expected={exp.expected_address} (authoritative={exp.expected_authoritative}) "
            f"actual={observed}"
        )

    def to_dict(self) -> dict[str, Any]:
        exp = self.expectation
        return {
            "segment": exp.segment,
            "name": exp.name,
            "expected_address": exp.expected_address,
            "expected_authoritative": exp.expected_authoritative,
            "actual_address": self.actual.address if self.actual else None,
            "actual_authoritative": self.actual.authoritative if self.actual else None,
            "error": self.error,
            "passed": self.passed,
        }


@dataclass
class ValidationReport:
    """Results of running a validation suite."""

    label: str
    results: list[ProbeResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> list[ProbeResult]:
        return [result for result in self.results if not result.passed]

    def summary(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "probes": len(self.results),
            "failed": len(self.failures),
        }

"""Forwarding rule models."""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..constants import UPSTREAM
from ..utils.exceptions import NoReachableAuthority


class TargetSelection(str, Enum):
    """Which selection rule produced a forwarding target."""

    AUTHORITY = "authority"  # Live authoritative server is reachable
    LEGACY = "legacy"  # Previously authoritative server, migration window
    UPSTREAM = "upstream"  # External forwarder for public names


@dataclass(frozen=True)
class ForwardingRule:
    """
    Forward queries for `zone` held by `holder` to `target`.

    Attributes:
        holder: DnsServer id that enforces the rule
        zone: Zone pattern (suffix match)
        target: Target DnsServer id, or the UPSTREAM sentinel
        target_address: Address the holder forwards to
        selection: Selection rule that chose the target
    """

    holder: str
    zone: str
    target: str
    target_address: str
    selection: TargetSelection

    @property
    def is_upstream(self) -> bool:
        return self.target == UPSTREAM

    def to_dict(self) -> dict[str, Any]:
        return {
            "holder": self.holder,
            "zone": self.zone,
            "target": self.target,
            "target_address": self.target_address,
            "selection": self.selection.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ForwardingRule":
        return cls(
            holder=data["holder"],
            zone=data["zone"],
            target=data["target"],
            target_address=data["target_address"],
            selection=TargetSelection(data["selection"]),
        )


@dataclass(frozen=True)
class Diagnostic:
    """
    A pair for which no reachable target exists.

    For forwarding rules `holder` is a DnsServer and `subject` a zone. For
    default-resolver checks `holder` is a segment and `subject` the server it
    would be pointed at.
    """

    holder: str
    subject: str
    reason: str

    def __str__(self) -> str:
        return f"({self.holder}, {self.subject}): {self.reason}"

    def to_dict(self) -> dict[str, str]:
        return {"holder": self.holder, "subject": self.subject, "reason": self.reason}


@dataclass(frozen=True)
class RuleSet:
    """
    Complete forwarding configuration for one phase.

    Rules are kept sorted by (holder, zone) so that serialization is
    byte-for-byte stable for identical inputs.
    """

    rules: tuple[ForwardingRule, ...] = ()
    servers: tuple[str, ...] = ()
    zones: tuple[str, ...] = ()

    def for_holder(self, holder: str) -> list[ForwardingRule]:
        return [rule for rule in self.rules if rule.holder == holder]

    def get(self, holder: str, zone: str) -> ForwardingRule | None:
        for rule in self.rules:
            if rule.holder == holder and rule.zone == zone:
                return rule
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules": [rule.to_dict() for rule in self.rules],
            "servers": list(self.servers),
            "zones": list(self.zones),
        }

    def to_json(self) -> str:
        """Canonical JSON encoding."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuleSet":
        return cls(
            rules=tuple(ForwardingRule.from_dict(r) for r in data.get("rules", [])),
            servers=tuple(data.get("servers", [])),
            zones=tuple(data.get("zones", [])),
        )

    def __len__(self) -> int:
        return len(self.rules)


@dataclass(frozen=True)
class RuleComputation:
    """Result of a rule engine run: the candidate rule set plus diagnostics."""

    rule_set: RuleSet
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def require_complete(self) -> RuleSet:
        """
        Return the rule set, failing closed if any pair is unresolvable.

        Raises:
            NoReachableAuthority: If there is at least one diagnostic.
        """
        if self.diagnostics:
            raise NoReachableAuthority(list(self.diagnostics))
        return self.rule_set

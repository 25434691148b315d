"""Data models for remittance-to-claim matching."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

_RANKS = {"none": 0, "low": 1, "medium": 2, "high": 3}


class MatchConfidence(str, Enum):
    """How strongly a remittance line is tied to a claim and charge."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]

    @property
    def needs_review(self) -> bool:
        return self.rank <= _RANKS["low"]


@dataclass(frozen=True)
class MatchResult:
    """Single best match for one remittance service line."""

    confidence: MatchConfidence
    reason: str
    matched_claim_id: str | None = None
    matched_charge_id: str | None = None

    @classmethod
    def no_match(cls) -> "MatchResult":
        return cls(confidence=MatchConfidence.NONE, reason="no match found")

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched_claim_id": self.matched_claim_id,
            "matched_charge_id": self.matched_charge_id,
            "confidence": self.confidence.value,
            "reason": self.reason,
        }

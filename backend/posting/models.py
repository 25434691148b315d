"""Data models for remittance posting."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class LinePostingStatus(str, Enum):
    POSTED = "posted"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class PostingOptions:
    """Caller-selected posting policies."""

    post_adjustments: bool = True
    create_patient_responsibility: bool = False


@dataclass(frozen=True)
class LinePostingResult:
    """Outcome for a single remittance line item."""

    line_item_id: str
    status: LinePostingStatus
    message: str | None = None
    charge_id: str | None = None
    payment_id: str | None = None
    paid_amount: float = 0.0
    adjusted_amount: float = 0.0
    contractual_amount: float = 0.0
    patient_amount: float = 0.0
    new_balance: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class PostingResult:
    """Container for all line outcomes and aggregate posted amounts."""

    remittance_id: str
    line_results: list[LinePostingResult] = field(default_factory=list)
    posted_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    total_payments: float = 0.0
    total_adjustments: float = 0.0
    contractual_adjustments: float = 0.0
    patient_responsibility: float = 0.0
    errors: list[str] = field(default_factory=list)
    is_processed: bool = False

    def add(self, line: LinePostingResult) -> None:
        self.line_results.append(line)
        if line.status == LinePostingStatus.POSTED:
            self.posted_count += 1
            self.total_payments = round(self.total_payments + line.paid_amount, 2)
            self.total_adjustments = round(self.total_adjustments + line.adjusted_amount, 2)
            self.contractual_adjustments = round(
                self.contractual_adjustments + line.contractual_amount, 2
            )
            self.patient_responsibility = round(
                self.patient_responsibility + line.patient_amount, 2
            )
        elif line.status == LinePostingStatus.SKIPPED:
            self.skipped_count += 1
        else:
            self.error_count += 1
            self.errors.append(f"{line.line_item_id}: {line.message}")

    @property
    def success(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "remittance_id": self.remittance_id,
            "success": self.success,
            "is_processed": self.is_processed,
            "posted_count": self.posted_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "total_payments": self.total_payments,
            "total_adjustments": self.total_adjustments,
            "contractual_adjustments": self.contractual_adjustments,
            "patient_responsibility": self.patient_responsibility,
            "errors": self.errors,
            "line_results": [line.to_dict() for line in self.line_results],
        }

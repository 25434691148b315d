"""Data models for denial and underpayment detection."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from edi.reason_codes import DenialCategory


class DenialWorkflow(str, Enum):
    CORRECT_AND_RESUBMIT = "correct_and_resubmit"
    APPEAL = "appeal"
    PATIENT_RESPONSIBILITY = "patient_responsibility"
    WRITE_OFF = "write_off"
    ESCALATE = "escalate"
    NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True)
class DetectionHit:
    """Represents a single flagged remittance line or charge."""

    kind: str
    flag: str
    description: str
    severity: str
    amount: float
    reference: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DetectionResult:
    """Container for all hits and aggregate amounts at risk."""

    hits: list[DetectionHit] = field(default_factory=list)
    total_denied: float = 0.0
    total_underpaid: float = 0.0
    potential_recovery: float = 0.0

    def add_hit(self, hit: DetectionHit) -> None:
        self.hits.append(hit)
        if hit.kind == "denial":
            self.total_denied = round(self.total_denied + hit.amount, 2)
        elif hit.kind == "underpayment":
            self.total_underpaid = round(self.total_underpaid + hit.amount, 2)
            recovery = hit.metadata.get("recovery_amount")
            if recovery is not None:
                self.potential_recovery = round(self.potential_recovery + float(recovery), 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": [asdict(hit) for hit in self.hits],
            "denial_count": sum(1 for hit in self.hits if hit.kind == "denial"),
            "underpayment_count": sum(1 for hit in self.hits if hit.kind == "underpayment"),
            "total_denied": self.total_denied,
            "total_underpaid": self.total_underpaid,
            "potential_recovery": self.potential_recovery,
        }


@dataclass(frozen=True)
class DenialFinding:
    """A denied (or partially denied) remittance service line."""

    denial_code: str
    category: DenialCategory
    description: str
    is_correctable: bool
    approach: str
    workflow: DenialWorkflow
    priority: str
    denied_amount: float
    cpt_code: str = ""
    line_number: int = 0
    patient_name: str = ""
    patient_account_number: str | None = None
    payer_claim_number: str | None = None
    remark_codes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["workflow"] = self.workflow.value
        data["remark_codes"] = list(self.remark_codes)
        return data

    def to_hit(self) -> DetectionHit:
        return DetectionHit(
            kind="denial",
            flag=self.denial_code or "DENIED",
            description=self.description,
            severity=self.priority,
            amount=self.denied_amount,
            reference=self.patient_account_number,
            metadata={
                "category": self.category.value,
                "workflow": self.workflow.value,
                "is_correctable": self.is_correctable,
                "cpt_code": self.cpt_code,
                "line_number": self.line_number,
            },
        )


@dataclass(frozen=True)
class UnderpaymentFinding:
    """A payment below the expected allowed amount."""

    billed_amount: float
    expected_amount: float
    paid_amount: float
    underpaid_amount: float
    underpaid_percent: float
    calculation_basis: str
    reason: str
    recovery_likelihood: float
    recovery_amount: float
    recovery_tier: str
    adjustment_codes: tuple[str, ...] = ()
    cpt_code: str | None = None
    service_date: date | None = None
    charge_id: str | None = None
    claim_id: str | None = None
    patient_id: str | None = None
    payer_name: str | None = None
    line_number: int | None = None
    patient_account_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["service_date"] = self.service_date.isoformat() if self.service_date else None
        data["adjustment_codes"] = list(self.adjustment_codes)
        return data

    def to_hit(self) -> DetectionHit:
        return DetectionHit(
            kind="underpayment",
            flag=self.calculation_basis,
            description=self.reason,
            severity=self.recovery_tier,
            amount=self.underpaid_amount,
            reference=self.charge_id or self.patient_account_number,
            metadata={
                "recovery_amount": self.recovery_amount,
                "recovery_likelihood": self.recovery_likelihood,
                "expected_amount": self.expected_amount,
                "paid_amount": self.paid_amount,
                "cpt_code": self.cpt_code,
                "line_number": self.line_number,
            },
        )

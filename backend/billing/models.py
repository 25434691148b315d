"""Billing ledger entities: claims, charges, remittance lines, payments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any

from edi.models import Adjustment, RemittanceClaim, RemittanceService

if TYPE_CHECKING:
    from schemas.claims import ClaimSubmissionRequest


class RecordNotFoundError(Exception):
    """Raised when a referenced record does not exist for the organization."""


class InvalidTransitionError(Exception):
    """Raised when a claim status change is not allowed."""


class ClaimStatus(str, Enum):
    """Lifecycle status of a claim."""

    DRAFT = "draft"
    READY = "ready"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PAID = "paid"
    DENIED = "denied"
    APPEALED = "appealed"
    VOID = "void"

    def can_transition_to(self, target: "ClaimStatus") -> bool:
        return target in CLAIM_TRANSITIONS[self]


CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.DRAFT: frozenset({ClaimStatus.READY, ClaimStatus.SUBMITTED, ClaimStatus.VOID}),
    ClaimStatus.READY: frozenset({ClaimStatus.DRAFT, ClaimStatus.SUBMITTED, ClaimStatus.VOID}),
    ClaimStatus.SUBMITTED: frozenset(
        {ClaimStatus.ACCEPTED, ClaimStatus.REJECTED, ClaimStatus.PAID, ClaimStatus.DENIED}
    ),
    ClaimStatus.ACCEPTED: frozenset({ClaimStatus.PAID, ClaimStatus.DENIED}),
    ClaimStatus.REJECTED: frozenset({ClaimStatus.DRAFT, ClaimStatus.READY, ClaimStatus.VOID}),
    ClaimStatus.DENIED: frozenset({ClaimStatus.APPEALED, ClaimStatus.VOID}),
    ClaimStatus.APPEALED: frozenset({ClaimStatus.PAID, ClaimStatus.DENIED}),
    ClaimStatus.PAID: frozenset(),
    ClaimStatus.VOID: frozenset(),
}


class ChargeStatus(str, Enum):
    """Ledger status of a charge."""

    PENDING = "pending"
    BILLED = "billed"
    PAID = "paid"
    VOID = "void"


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class ClaimLine:
    """One billed procedure within a claim."""

    line_number: int
    cpt_code: str
    charge_amount: float
    units: float = 1
    modifiers: list[str] = field(default_factory=list)
    service_date_from: date | None = None
    service_date_to: date | None = None
    diagnosis_pointers: list[int] = field(default_factory=list)
    place_of_service: str | None = None
    charge_id: str | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "cpt_code": self.cpt_code,
            "modifiers": self.modifiers,
            "units": self.units,
            "charge_amount": self.charge_amount,
            "service_date_from": _iso(self.service_date_from),
            "service_date_to": _iso(self.service_date_to),
            "diagnosis_pointers": self.diagnosis_pointers,
            "place_of_service": self.place_of_service,
            "charge_id": self.charge_id,
        }


@dataclass
class Claim:
    """A submitted (or to-be-submitted) bundle of service lines."""

    organization_id: str
    claim_number: str
    patient_id: str
    total_charge: float
    lines: list[ClaimLine] = field(default_factory=list)
    diagnosis_codes: list[str] = field(default_factory=list)
    claim_type: str = "professional"
    status: ClaimStatus = ClaimStatus.DRAFT
    payer_id: str | None = None
    payer_name: str | None = None
    rendering_provider_id: str | None = None
    payer_claim_number: str | None = None
    control_number: str | None = None
    id: str | None = None
    created_at: str | None = None
    submitted_at: str | None = None

    @classmethod
    def from_submission(
        cls, organization_id: str, patient_id: str, request: ClaimSubmissionRequest
    ) -> "Claim":
        """Build a draft claim from a submission request."""
        claim = request.claim
        return cls(
            organization_id=organization_id,
            claim_number=claim.claim_number,
            patient_id=patient_id,
            total_charge=claim.total_charges,
            claim_type=claim.claim_type,
            payer_id=request.insurance.payer_id,
            payer_name=request.insurance.payer_name,
            rendering_provider_id=request.provider.npi,
            diagnosis_codes=[dx.code for dx in claim.diagnoses],
            lines=[
                ClaimLine(
                    line_number=svc.line_number or index,
                    cpt_code=svc.cpt_code,
                    charge_amount=svc.charge_amount,
                    units=svc.units,
                    modifiers=list(svc.modifiers),
                    service_date_from=svc.service_date_from,
                    service_date_to=svc.service_date_to or svc.service_date_from,
                    diagnosis_pointers=list(svc.diagnosis_pointers),
                    place_of_service=svc.place_of_service or claim.place_of_service,
                )
                for index, svc in enumerate(claim.services, start=1)
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "claim_number": self.claim_number,
            "patient_id": self.patient_id,
            "total_charge": self.total_charge,
            "claim_type": self.claim_type,
            "status": self.status.value,
            "payer_id": self.payer_id,
            "payer_name": self.payer_name,
            "rendering_provider_id": self.rendering_provider_id,
            "payer_claim_number": self.payer_claim_number,
            "control_number": self.control_number,
            "diagnosis_codes": self.diagnosis_codes,
            "lines": [line.to_dict() for line in self.lines],
            "created_at": self.created_at,
            "submitted_at": self.submitted_at,
        }


@dataclass
class Charge:
    """Ledger record backing a service line.

    ``balance = fee * units - payments - adjustments``, floored at zero.
    """

    organization_id: str
    patient_id: str
    cpt_code: str
    fee: float
    units: float = 1
    service_date: date | None = None
    claim_id: str | None = None
    payments: float = 0.0
    adjustments: float = 0.0
    balance: float | None = None
    status: ChargeStatus = ChargeStatus.PENDING
    id: str | None = None

    def __post_init__(self) -> None:
        if self.balance is None:
            self.balance = max(0.0, round(self.gross_amount - self.payments - self.adjustments, 2))

    @property
    def gross_amount(self) -> float:
        return round(self.fee * self.units, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "patient_id": self.patient_id,
            "claim_id": self.claim_id,
            "cpt_code": self.cpt_code,
            "service_date": _iso(self.service_date),
            "fee": self.fee,
            "units": self.units,
            "payments": self.payments,
            "adjustments": self.adjustments,
            "balance": self.balance,
            "status": self.status.value,
        }


@dataclass
class RemittanceLineItem:
    """Persisted service-level payment detail; the unit of matching and posting."""

    remittance_id: str
    line_number: int
    cpt_code: str
    claim_index: int = 0
    patient_name: str = ""
    patient_account_number: str | None = None
    payer_claim_number: str | None = None
    claim_status_code: str = ""
    modifiers: list[str] = field(default_factory=list)
    units: int = 1
    service_date: date | None = None
    charged_amount: float = 0.0
    allowed_amount: float = 0.0
    paid_amount: float = 0.0
    adjusted_amount: float = 0.0
    patient_amount: float = 0.0
    adjustments: list[Adjustment] = field(default_factory=list)
    remark_codes: list[str] = field(default_factory=list)
    is_posted: bool = False
    posted_at: str | None = None
    posted_by: str | None = None
    matched_claim_id: str | None = None
    matched_charge_id: str | None = None
    match_confidence: str | None = None
    match_reason: str | None = None
    id: str | None = None

    @property
    def adjustment_reason_codes(self) -> list[str]:
        return [adj.code for adj in self.adjustments]

    def to_service(self) -> RemittanceService:
        """Rebuild the parsed service line this item was stored from."""
        return RemittanceService(
            cpt_code=self.cpt_code,
            modifiers=list(self.modifiers),
            units=self.units,
            service_date=self.service_date,
            charged_amount=self.charged_amount,
            allowed_amount=self.allowed_amount,
            paid_amount=self.paid_amount,
            adjusted_amount=self.adjusted_amount,
            patient_amount=self.patient_amount,
            adjustments=list(self.adjustments),
            remark_codes=list(self.remark_codes),
            line_number=self.line_number,
            is_posted=self.is_posted,
        )

    def claim_context(self) -> RemittanceClaim:
        """Claim payment identifiers, without services or totals."""
        return RemittanceClaim(
            patient_name=self.patient_name,
            patient_account_number=self.patient_account_number,
            payer_claim_number=self.payer_claim_number,
            status_code=self.claim_status_code,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "remittance_id": self.remittance_id,
            "line_number": self.line_number,
            "claim_index": self.claim_index,
            "patient_name": self.patient_name,
            "patient_account_number": self.patient_account_number,
            "payer_claim_number": self.payer_claim_number,
            "claim_status_code": self.claim_status_code,
            "cpt_code": self.cpt_code,
            "modifiers": self.modifiers,
            "units": self.units,
            "service_date": _iso(self.service_date),
            "charged_amount": self.charged_amount,
            "allowed_amount": self.allowed_amount,
            "paid_amount": self.paid_amount,
            "adjusted_amount": self.adjusted_amount,
            "patient_amount": self.patient_amount,
            "adjustment_reason_codes": self.adjustment_reason_codes,
            "remark_codes": self.remark_codes,
            "is_posted": self.is_posted,
            "posted_at": self.posted_at,
            "posted_by": self.posted_by,
            "matched_claim_id": self.matched_claim_id,
            "matched_charge_id": self.matched_charge_id,
            "match_confidence": self.match_confidence,
            "match_reason": self.match_reason,
        }


@dataclass
class Payment:
    """Money received against a claim."""

    organization_id: str
    amount: float
    method: str = "insurance"
    claim_id: str | None = None
    remittance_id: str | None = None
    line_item_id: str | None = None
    reference: str | None = None
    payment_date: date | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "amount": self.amount,
            "method": self.method,
            "claim_id": self.claim_id,
            "remittance_id": self.remittance_id,
            "line_item_id": self.line_item_id,
            "reference": self.reference,
            "payment_date": _iso(self.payment_date),
        }


@dataclass(frozen=True)
class PaymentAllocation:
    """Portion of a payment applied to a specific charge."""

    payment_id: str
    charge_id: str
    amount: float
    id: str | None = None


@dataclass(frozen=True)
class FeeScheduleItem:
    """Expected allowed amount for a CPT code over a date range."""

    organization_id: str
    cpt_code: str
    allowed_amount: float
    effective_date: date
    end_date: date | None = None
    payer_id: str | None = None
    id: str | None = None

"""Data models for parsed 835 remittance advice."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .reason_codes import PATIENT_RESPONSIBILITY_GROUP


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Adjustment:
    """One CAS reason/amount pair with its group code."""

    group_code: str
    reason_code: str
    amount: float
    quantity: float | None = None

    @property
    def code(self) -> str:
        return f"{self.group_code}-{self.reason_code}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_code": self.group_code,
            "reason_code": self.reason_code,
            "code": self.code,
            "amount": self.amount,
            "quantity": self.quantity,
        }


@dataclass
class RemittanceService:
    """Service line payment detail (SVC loop)."""

    cpt_code: str = ""
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
    line_number: int = 0
    is_posted: bool = False

    def add_adjustment(self, adjustment: Adjustment) -> None:
        """Attach an adjustment, routing PR amounts to patient responsibility."""
        self.adjustments.append(adjustment)
        if adjustment.group_code == PATIENT_RESPONSIBILITY_GROUP:
            self.patient_amount += adjustment.amount
        else:
            self.adjusted_amount += adjustment.amount

    @property
    def adjustment_reason_codes(self) -> list[str]:
        return [adj.code for adj in self.adjustments]

    def adjustment_amounts(self) -> dict[str, float]:
        """Total amount per ``GROUP-REASON`` code on this line."""
        totals: dict[str, float] = {}
        for adj in self.adjustments:
            totals[adj.code] = totals.get(adj.code, 0.0) + adj.amount
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_number": self.line_number,
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
            "adjustments": [adj.to_dict() for adj in self.adjustments],
            "remark_codes": self.remark_codes,
            "is_posted": self.is_posted,
        }


@dataclass
class RemittanceClaim:
    """Claim payment group (CLP loop)."""

    patient_name: str = ""
    patient_account_number: str | None = None
    payer_claim_number: str | None = None
    patient_identifier: str | None = None
    status_code: str = ""
    charged_amount: float = 0.0
    paid_amount: float = 0.0
    patient_responsibility: float = 0.0
    adjustments: list[Adjustment] = field(default_factory=list)
    remark_codes: list[str] = field(default_factory=list)
    services: list[RemittanceService] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_name": self.patient_name,
            "patient_account_number": self.patient_account_number,
            "payer_claim_number": self.payer_claim_number,
            "patient_identifier": self.patient_identifier,
            "status_code": self.status_code,
            "charged_amount": self.charged_amount,
            "paid_amount": self.paid_amount,
            "patient_responsibility": self.patient_responsibility,
            "adjustments": [adj.to_dict() for adj in self.adjustments],
            "remark_codes": self.remark_codes,
            "services": [svc.to_dict() for svc in self.services],
        }


@dataclass(frozen=True)
class ProviderAdjustment:
    """Provider-level balance adjustment (PLB)."""

    provider_id: str
    fiscal_period_date: date | None
    reason_code: str
    reference: str
    amount: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "fiscal_period_date": _iso(self.fiscal_period_date),
            "reason_code": self.reason_code,
            "reference": self.reference,
            "amount": self.amount,
        }


@dataclass
class Remittance:
    """A parsed 835 payment advice.

    ``payment_amount`` is BPR02 as reported by the payer; ``total_paid`` is
    derived from the service lines.
    """

    check_number: str = ""
    check_date: date | None = None
    payer_name: str = ""
    payer_id: str | None = None
    payee_name: str = ""
    payee_id: str | None = None
    payment_method: str = ""
    payment_amount: float = 0.0
    total_paid: float = 0.0
    total_adjusted: float = 0.0
    total_charges: float = 0.0
    claims: list[RemittanceClaim] = field(default_factory=list)
    provider_adjustments: list[ProviderAdjustment] = field(default_factory=list)
    raw_content: str = ""
    is_processed: bool = False
    id: str | None = None

    @property
    def claim_count(self) -> int:
        return len(self.claims)

    @property
    def service_count(self) -> int:
        return sum(len(claim.services) for claim in self.claims)

    def iter_services(self) -> Iterator[tuple[RemittanceClaim, RemittanceService]]:
        """Yield every service line with its enclosing claim payment."""
        for claim in self.claims:
            for service in claim.services:
                yield claim, service

    def recompute_totals(self) -> None:
        """Derive totals from service lines, or claim totals when none exist."""
        services = [svc for _, svc in self.iter_services()]
        if services:
            self.total_paid = round(sum(s.paid_amount for s in services), 2)
            self.total_adjusted = round(sum(s.adjusted_amount for s in services), 2)
            self.total_charges = round(sum(s.charged_amount for s in services), 2)
        else:
            self.total_paid = round(sum(c.paid_amount for c in self.claims), 2)
            self.total_adjusted = round(
                sum(adj.amount for c in self.claims for adj in c.adjustments), 2
            )
            self.total_charges = round(sum(c.charged_amount for c in self.claims), 2)

    def to_dict(self, include_raw: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "check_number": self.check_number,
            "check_date": _iso(self.check_date),
            "payer_name": self.payer_name,
            "payer_id": self.payer_id,
            "payee_name": self.payee_name,
            "payee_id": self.payee_id,
            "payment_method": self.payment_method,
            "payment_amount": self.payment_amount,
            "total_paid": self.total_paid,
            "total_adjusted": self.total_adjusted,
            "total_charges": self.total_charges,
            "claim_count": self.claim_count,
            "claims": [claim.to_dict() for claim in self.claims],
            "provider_adjustments": [plb.to_dict() for plb in self.provider_adjustments],
            "is_processed": self.is_processed,
        }
        if include_raw:
            data["raw_content"] = self.raw_content
        return data

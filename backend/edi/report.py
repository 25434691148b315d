"""Posting report derived from a remittance.

The report is a pure summary of a ``Remittance``; it gives the same answer
for a freshly parsed 835 and for one rebuilt from stored line items.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .models import Remittance
from .reason_codes import describe_carc, group_category, split_adjustment_code


@dataclass(frozen=True)
class AdjustmentBreakdown:
    code: str
    description: str
    category: str
    total_amount: float
    occurrences: int


@dataclass
class PostingSummary:
    total_claims: int = 0
    total_service_lines: int = 0
    total_charged: float = 0.0
    total_paid: float = 0.0
    total_contractual_adjustment: float = 0.0
    total_patient_responsibility: float = 0.0
    total_denied: float = 0.0
    posted_lines: int = 0
    unposted_lines: int = 0


@dataclass
class PostingReport:
    """Per-claim detail plus aggregated adjustment totals for one remittance."""

    check_number: str
    check_date: str | None
    payer_name: str
    summary: PostingSummary
    claim_details: list[dict[str, Any]] = field(default_factory=list)
    adjustment_breakdown: list[AdjustmentBreakdown] = field(default_factory=list)
    remittance_id: str | None = None
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "remittance_id": self.remittance_id,
            "check_number": self.check_number,
            "check_date": self.check_date,
            "payer_name": self.payer_name,
            "summary": asdict(self.summary),
            "claim_details": self.claim_details,
            "adjustment_breakdown": [asdict(item) for item in self.adjustment_breakdown],
            "generated_at": self.generated_at,
        }


def generate_posting_report(remittance: Remittance) -> PostingReport:
    """Summarize a remittance for posting review.

    Args:
        remittance: Parsed or reconstructed remittance

    Returns:
        PostingReport with summary totals, claim details and a breakdown of
        adjustment codes sorted by total amount, largest first
    """
    adjustment_totals: dict[str, list[float]] = {}
    summary = PostingSummary()
    claim_details: list[dict[str, Any]] = []

    for claim in remittance.claims:
        claim_total = {"charged": 0.0, "paid": 0.0, "adjusted": 0.0, "patient_amount": 0.0}
        services = []
        for svc in claim.services:
            for code, amount in svc.adjustment_amounts().items():
                totals = adjustment_totals.setdefault(code, [0.0, 0])
                totals[0] += amount
                totals[1] += 1

            claim_total["charged"] += svc.charged_amount
            claim_total["paid"] += svc.paid_amount
            claim_total["adjusted"] += svc.adjusted_amount
            claim_total["patient_amount"] += svc.patient_amount

            if svc.paid_amount == 0 and svc.charged_amount > 0:
                summary.total_denied += svc.charged_amount
            if svc.is_posted:
                summary.posted_lines += 1
            else:
                summary.unposted_lines += 1

            services.append(svc.to_dict())

        summary.total_claims += 1
        summary.total_service_lines += len(claim.services)
        summary.total_charged += claim_total["charged"]
        summary.total_paid += claim_total["paid"]
        summary.total_contractual_adjustment += claim_total["adjusted"]
        summary.total_patient_responsibility += claim_total["patient_amount"]

        claim_details.append(
            {
                "patient_name": claim.patient_name,
                "patient_account_number": claim.patient_account_number,
                "payer_claim_number": claim.payer_claim_number,
                "services": services,
                "claim_total": {key: round(value, 2) for key, value in claim_total.items()},
            }
        )

    for attr in (
        "total_charged",
        "total_paid",
        "total_contractual_adjustment",
        "total_patient_responsibility",
        "total_denied",
    ):
        setattr(summary, attr, round(getattr(summary, attr), 2))

    breakdown = []
    for code, (amount, count) in adjustment_totals.items():
        group_code, _ = split_adjustment_code(code)
        breakdown.append(
            AdjustmentBreakdown(
                code=code,
                description=describe_carc(code),
                category=group_category(group_code),
                total_amount=round(amount, 2),
                occurrences=int(count),
            )
        )
    breakdown.sort(key=lambda item: item.total_amount, reverse=True)

    return PostingReport(
        remittance_id=remittance.id,
        check_number=remittance.check_number,
        check_date=remittance.check_date.isoformat() if remittance.check_date else None,
        payer_name=remittance.payer_name or "Unknown Payer",
        summary=summary,
        claim_details=claim_details,
        adjustment_breakdown=breakdown,
    )

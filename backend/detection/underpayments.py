"""Underpayment detection.

Compares what a payer paid against the amount the practice expected to be
allowed. The expected amount comes from the fee schedule in effect on the
date of service, else the recent historical average paid for the CPT code,
else a fixed share of the billed amount.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import date
from typing import Any

from billing.models import Claim
from billing.store import BillingStore
from edi.models import Remittance
from edi.reason_codes import split_adjustment_code

from .models import UnderpaymentFinding
from .thresholds import UnderpaymentThresholds

logger = logging.getLogger(__name__)

# Adjustment reasons that often hide a recoverable underpayment
QUESTIONABLE_ADJUSTMENT_CODES = frozenset(
    {"45", "96", "97", "B1", "B4", "B5", "B7", "B15", "B16"}
)

# Adjustment reasons that rarely warrant an appeal
VALID_ADJUSTMENT_CODES = frozenset({"1", "2", "3", "PR", "CO"})

BASIS_FEE_SCHEDULE = "fee_schedule"
BASIS_HISTORICAL = "historical"
BASIS_BILLED_RATIO = "billed_ratio"


def _reason_codes(adjustment_codes: Iterable[str]) -> list[str]:
    return [split_adjustment_code(code)[1] for code in adjustment_codes]


def recovery_likelihood(
    adjustment_codes: Iterable[str],
    underpaid_percent: float,
    payer_name: str | None = None,
) -> float:
    """Heuristic odds of recovering an underpayment, clamped to 0.1-0.9."""
    reasons = _reason_codes(adjustment_codes)
    questionable = any(code in QUESTIONABLE_ADJUSTMENT_CODES for code in reasons)
    valid = any(code in VALID_ADJUSTMENT_CODES for code in reasons)

    likelihood = 0.5
    if questionable and not valid:
        likelihood += 0.2
    elif valid and not questionable:
        likelihood -= 0.2

    if underpaid_percent > 30:
        likelihood += 0.15
    elif underpaid_percent > 20:
        likelihood += 0.1

    payer = (payer_name or "").upper()
    if "MEDICARE" in payer:
        likelihood -= 0.1
    elif "MEDICAID" in payer:
        likelihood -= 0.15

    return UnderpaymentThresholds.clamp_likelihood(round(likelihood, 2))


def underpayment_reason(adjustment_codes: Iterable[str], underpaid_percent: float) -> str:
    for code in _reason_codes(adjustment_codes):
        if code == "45":
            return "Payment reduced to fee schedule maximum"
        if code == "96":
            return "Non-covered services - review medical necessity"
        if code == "97":
            return "Bundled with another service - review CCI edits"
        if code in ("B15", "B16"):
            return "Network rate adjustment - verify contract terms"

    if underpaid_percent > 50:
        return "Significant underpayment - recommend contract review"
    if underpaid_percent > 30:
        return "Moderate underpayment - verify fee schedule"
    if underpaid_percent > 15:
        return "Minor underpayment - may be within variance"
    return "Review payment against expected amount"


def evaluate_underpayment(
    billed_amount: float,
    expected_amount: float,
    paid_amount: float,
    adjustment_codes: Iterable[str] = (),
    payer_name: str | None = None,
    calculation_basis: str = BASIS_FEE_SCHEDULE,
    thresholds: UnderpaymentThresholds | None = None,
) -> UnderpaymentFinding | None:
    """Flag a payment that falls short of the expected amount.

    Args:
        billed_amount: Amount charged
        expected_amount: Expected allowed amount
        paid_amount: Amount the payer paid
        adjustment_codes: ``GROUP-REASON`` or bare reason codes on the payment
        payer_name: Payer name, used to weigh recovery odds
        calculation_basis: Where ``expected_amount`` came from
        thresholds: Minimum percent and amount to flag

    Returns:
        UnderpaymentFinding, or None when both thresholds are not met
    """
    thresholds = thresholds or UnderpaymentThresholds()
    underpaid = round(expected_amount - paid_amount, 2)
    percent = round(underpaid / expected_amount * 100, 2) if expected_amount > 0 else 0.0
    if not thresholds.is_underpaid(underpaid, percent):
        return None

    codes = tuple(adjustment_codes)
    likelihood = recovery_likelihood(codes, percent, payer_name)
    return UnderpaymentFinding(
        billed_amount=round(billed_amount, 2),
        expected_amount=round(expected_amount, 2),
        paid_amount=round(paid_amount, 2),
        underpaid_amount=underpaid,
        underpaid_percent=percent,
        calculation_basis=calculation_basis,
        reason=underpayment_reason(codes, percent),
        recovery_likelihood=likelihood,
        recovery_amount=round(underpaid * likelihood, 2),
        recovery_tier=thresholds.recovery_tier(likelihood),
        adjustment_codes=codes,
        payer_name=payer_name,
    )


class UnderpaymentDetector:
    """Scans remittances and posted charges for underpayments."""

    def __init__(self, store: BillingStore, thresholds: UnderpaymentThresholds | None = None) -> None:
        self.store = store
        self.thresholds = thresholds or UnderpaymentThresholds.from_config()

    def expected_amount(
        self,
        organization_id: str,
        cpt_code: str | None,
        service_date: date | None,
        billed_amount: float,
        payer_id: str | None = None,
    ) -> tuple[float, str]:
        """Expected allowed amount and the basis it was derived from."""
        if cpt_code:
            scheduled = self.store.find_fee_schedule_amount(
                organization_id, cpt_code, service_date, payer_id
            )
            if scheduled is not None:
                return scheduled, BASIS_FEE_SCHEDULE

            historical = self.store.historical_average_paid(
                organization_id,
                cpt_code,
                as_of=service_date,
                lookback_days=self.thresholds.history_lookback_days,
                min_points=self.thresholds.history_min_points,
            )
            if historical is not None:
                return historical, BASIS_HISTORICAL

        return round(billed_amount * self.thresholds.default_expected_ratio, 2), BASIS_BILLED_RATIO

    def scan_remittance(
        self, organization_id: str, remittance: Remittance
    ) -> list[UnderpaymentFinding]:
        """Check every paid service line of a remittance.

        Returns:
            Findings sorted by potential recovery, largest first
        """
        findings: list[UnderpaymentFinding] = []
        for claim, svc in remittance.iter_services():
            if svc.paid_amount <= 0:
                continue
            expected, basis = self.expected_amount(
                organization_id, svc.cpt_code, svc.service_date, svc.charged_amount, remittance.payer_id
            )
            finding = evaluate_underpayment(
                billed_amount=svc.charged_amount,
                expected_amount=expected,
                paid_amount=svc.paid_amount,
                adjustment_codes=svc.adjustment_reason_codes,
                payer_name=remittance.payer_name,
                calculation_basis=basis,
                thresholds=self.thresholds,
            )
            if finding is None:
                continue
            findings.append(
                replace(
                    finding,
                    cpt_code=svc.cpt_code,
                    service_date=svc.service_date,
                    line_number=svc.line_number,
                    patient_account_number=claim.patient_account_number,
                )
            )

        findings.sort(key=lambda f: f.recovery_amount, reverse=True)
        logger.info(
            f"Underpayment scan of remittance {remittance.id}: {len(findings)} flagged "
            f"of {remittance.service_count} lines"
        )
        return findings

    def scan_charges(
        self,
        organization_id: str,
        claim_id: str | None = None,
        since: date | None = None,
        limit: int = 500,
    ) -> list[UnderpaymentFinding]:
        """Check charges that have received payments.

        Returns:
            Findings sorted by potential recovery, largest first
        """
        charges = self.store.list_charges(
            organization_id, claim_id=claim_id, paid_only=True, since=since, limit=limit
        )
        claims: dict[str, Claim | None] = {}
        findings: list[UnderpaymentFinding] = []

        for charge in charges:
            claim = None
            if charge.claim_id:
                if charge.claim_id not in claims:
                    claims[charge.claim_id] = self.store.get_claim(organization_id, charge.claim_id)
                claim = claims[charge.claim_id]
            payer_id = claim.payer_id if claim else None
            payer_name = claim.payer_name if claim else None

            expected, basis = self.expected_amount(
                organization_id, charge.cpt_code, charge.service_date, charge.gross_amount, payer_id
            )
            finding = evaluate_underpayment(
                billed_amount=charge.gross_amount,
                expected_amount=expected,
                paid_amount=charge.payments,
                adjustment_codes=self.store.adjustment_codes_for_charge(organization_id, charge.id),
                payer_name=payer_name,
                calculation_basis=basis,
                thresholds=self.thresholds,
            )
            if finding is None:
                continue
            findings.append(
                replace(
                    finding,
                    cpt_code=charge.cpt_code,
                    service_date=charge.service_date,
                    charge_id=charge.id,
                    claim_id=charge.claim_id,
                    patient_id=charge.patient_id,
                )
            )

        findings.sort(key=lambda f: f.recovery_amount, reverse=True)
        logger.info(f"Underpayment scan: {len(findings)} of {len(charges)} paid charges flagged")
        return findings


def summarize_by_payer(findings: list[UnderpaymentFinding]) -> list[dict[str, Any]]:
    """Group findings by payer, largest total underpayment first."""
    by_payer: dict[str, dict[str, Any]] = {}
    for finding in findings:
        name = finding.payer_name or "Unknown Payer"
        entry = by_payer.setdefault(
            name, {"payer_name": name, "total_underpaid": 0.0, "total_expected": 0.0, "count": 0}
        )
        entry["total_underpaid"] += finding.underpaid_amount
        entry["total_expected"] += finding.expected_amount
        entry["count"] += 1

    summary = []
    for entry in by_payer.values():
        expected = entry.pop("total_expected")
        entry["total_underpaid"] = round(entry["total_underpaid"], 2)
        entry["avg_underpaid_percent"] = (
            round(entry["total_underpaid"] / expected * 100, 1) if expected else 0.0
        )
        summary.append(entry)
    return sorted(summary, key=lambda e: e["total_underpaid"], reverse=True)

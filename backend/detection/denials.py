"""Denial detection over remittance service lines.

A line is denied when it pays nothing against a non-zero charge, or when it
carries a non-patient adjustment whose CARC maps to a denial category.
"""

from __future__ import annotations

from typing import Any

from edi.models import Adjustment, Remittance, RemittanceClaim, RemittanceService
from edi.reason_codes import (
    PATIENT_RESPONSIBILITY_GROUP,
    DenialCategory,
    describe_carc,
    denial_category,
)

from .models import DenialFinding, DenialWorkflow

# Claim status code for a denied claim (CLP02)
DENIED_CLAIM_STATUS = "4"

WRITE_OFF_BELOW = 25.0
ESCALATE_ABOVE = 1000.0
HIGH_PRIORITY_ABOVE = 1000.0
MEDIUM_PRIORITY_ABOVE = 100.0

CATEGORY_HANDLING: dict[DenialCategory, tuple[bool, str]] = {
    DenialCategory.CODING: (True, "Correct codes and resubmit"),
    DenialCategory.ELIGIBILITY: (False, "Verify coverage, may be patient responsibility"),
    DenialCategory.AUTHORIZATION: (False, "Appeal with medical records"),
    DenialCategory.MEDICAL_NECESSITY: (False, "Appeal with clinical documentation"),
    DenialCategory.TIMELY_FILING: (False, "Appeal if extenuating circumstances"),
    DenialCategory.DUPLICATE: (True, "Verify and correct claim if legitimate resubmission"),
    DenialCategory.BUNDLING: (True, "Apply correct modifiers or rebundle"),
    DenialCategory.DOCUMENTATION: (True, "Attach required documentation and resubmit"),
    DenialCategory.COORDINATION_OF_BENEFITS: (True, "Update COB info and resubmit"),
    DenialCategory.OTHER: (False, "Manual review required"),
}

# Baseline appeal success odds; an appeal is recommended at 0.3 and above
APPEAL_LIKELIHOOD: dict[DenialCategory, float] = {
    DenialCategory.MEDICAL_NECESSITY: 0.45,
    DenialCategory.ELIGIBILITY: 0.4,
    DenialCategory.AUTHORIZATION: 0.35,
    DenialCategory.TIMELY_FILING: 0.2,
}
DEFAULT_APPEAL_LIKELIHOOD = 0.25
APPEAL_RECOMMENDED_MIN = 0.3


def recommend_workflow(category: DenialCategory, denied_amount: float) -> DenialWorkflow:
    correctable, _ = CATEGORY_HANDLING[category]
    if correctable:
        return DenialWorkflow.CORRECT_AND_RESUBMIT
    if category == DenialCategory.ELIGIBILITY:
        return DenialWorkflow.PATIENT_RESPONSIBILITY
    if APPEAL_LIKELIHOOD.get(category, DEFAULT_APPEAL_LIKELIHOOD) >= APPEAL_RECOMMENDED_MIN:
        return DenialWorkflow.APPEAL
    if denied_amount < WRITE_OFF_BELOW:
        return DenialWorkflow.WRITE_OFF
    if category == DenialCategory.OTHER or denied_amount > ESCALATE_ABOVE:
        return DenialWorkflow.ESCALATE
    return DenialWorkflow.NEEDS_REVIEW


def denial_priority(category: DenialCategory, denied_amount: float) -> str:
    if denied_amount > HIGH_PRIORITY_ABOVE:
        return "high"
    if denied_amount > MEDIUM_PRIORITY_ABOVE or category != DenialCategory.OTHER:
        return "medium"
    return "low"


def _denial_adjustments(adjustments: list[Adjustment]) -> list[Adjustment]:
    return [
        adj
        for adj in adjustments
        if adj.group_code != PATIENT_RESPONSIBILITY_GROUP and denial_category(adj.code) is not None
    ]


def _build_finding(
    claim: RemittanceClaim,
    adjustments: list[Adjustment],
    denied_amount: float,
    service: RemittanceService | None = None,
) -> DenialFinding:
    coded = _denial_adjustments(adjustments)
    candidates = coded or [
        adj for adj in adjustments if adj.group_code != PATIENT_RESPONSIBILITY_GROUP
    ]
    primary = max(candidates, key=lambda adj: adj.amount, default=None)

    if primary is not None:
        code = primary.code
        category = denial_category(code) or DenialCategory.OTHER
        description = describe_carc(code)
    else:
        code = ""
        category = DenialCategory.OTHER
        description = "No payment and no adjustment reason reported"

    correctable, approach = CATEGORY_HANDLING[category]
    denied_amount = round(denied_amount, 2)
    remarks = (service.remark_codes if service else []) + claim.remark_codes
    return DenialFinding(
        denial_code=code,
        category=category,
        description=description,
        is_correctable=correctable,
        approach=approach,
        workflow=recommend_workflow(category, denied_amount),
        priority=denial_priority(category, denied_amount),
        denied_amount=denied_amount,
        cpt_code=service.cpt_code if service else "",
        line_number=service.line_number if service else 0,
        patient_name=claim.patient_name,
        patient_account_number=claim.patient_account_number,
        payer_claim_number=claim.payer_claim_number,
        remark_codes=tuple(dict.fromkeys(remarks)),
    )


def detect_denials(remittance: Remittance) -> list[DenialFinding]:
    """Find denied service lines (and denied claims reported without lines).

    Args:
        remittance: Parsed or reconstructed remittance

    Returns:
        One DenialFinding per denied line, in remittance order
    """
    findings: list[DenialFinding] = []
    for claim in remittance.claims:
        if not claim.services:
            if claim.status_code == DENIED_CLAIM_STATUS or (
                claim.paid_amount == 0 and claim.charged_amount > 0
            ):
                findings.append(_build_finding(claim, claim.adjustments, claim.charged_amount))
            continue

        for svc in claim.services:
            coded = _denial_adjustments(svc.adjustments)
            fully_denied = svc.paid_amount == 0 and svc.charged_amount > 0
            if not fully_denied and not coded:
                continue
            denied_amount = (
                svc.charged_amount if fully_denied else sum(adj.amount for adj in coded)
            )
            findings.append(
                _build_finding(claim, svc.adjustments + claim.adjustments, denied_amount, svc)
            )
    return findings


def summarize_denials(findings: list[DenialFinding]) -> dict[str, Any]:
    """Aggregate findings by category and by denial code."""
    total_amount = round(sum(f.denied_amount for f in findings), 2)

    by_category: dict[str, dict[str, Any]] = {}
    by_code: dict[str, dict[str, Any]] = {}
    for finding in findings:
        cat = by_category.setdefault(
            finding.category.value, {"category": finding.category.value, "count": 0, "amount": 0.0}
        )
        cat["count"] += 1
        cat["amount"] += finding.denied_amount

        code_key = finding.denial_code or "NONE"
        entry = by_code.setdefault(
            code_key,
            {"code": code_key, "description": finding.description, "count": 0, "amount": 0.0},
        )
        entry["count"] += 1
        entry["amount"] += finding.denied_amount

    for cat in by_category.values():
        cat["amount"] = round(cat["amount"], 2)
        cat["percentage"] = round(cat["amount"] / total_amount * 100, 1) if total_amount else 0.0
    for entry in by_code.values():
        entry["amount"] = round(entry["amount"], 2)

    return {
        "total_denials": len(findings),
        "total_denied_amount": total_amount,
        "correctable_count": sum(1 for f in findings if f.is_correctable),
        "by_category": sorted(by_category.values(), key=lambda c: c["amount"], reverse=True),
        "by_code": sorted(by_code.values(), key=lambda c: c["amount"], reverse=True),
    }

"""Denial and underpayment detection routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query

from billing import FeeScheduleItem, RecordNotFoundError, get_billing_store
from config import DB_PATH
from detection import (
    UnderpaymentDetector,
    detect_denials,
    scan_remittance_findings,
    summarize_by_payer,
    summarize_denials,
)
from schemas import FeeScheduleRequest
from utils import parse_flexible_date

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/detection", tags=["detection"])


@router.get("/remittances/{remittance_id}")
async def scan_remittance(remittance_id: str, organization_id: str = Query(...)):
    """Run denial and underpayment detection over a stored remittance.

    Returns the combined hits plus totals for denied amount, underpaid
    amount and potential recovery.
    """
    try:
        result = scan_remittance_findings(get_billing_store(DB_PATH), organization_id, remittance_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Remittance not found")
    except Exception as e:
        logger.error(f"Detection failed for remittance {remittance_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Detection failed: {str(e)[:200]}")
    return {"remittance_id": remittance_id, **result.to_dict()}


@router.get("/remittances/{remittance_id}/denials")
async def list_denials(remittance_id: str, organization_id: str = Query(...)):
    """List denied service lines with category, workflow and priority."""
    try:
        remittance = get_billing_store(DB_PATH).load_remittance(organization_id, remittance_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Remittance not found")

    findings = detect_denials(remittance)
    return {
        "remittance_id": remittance_id,
        "denials": [finding.to_dict() for finding in findings],
        "summary": summarize_denials(findings),
    }


@router.get("/underpayments")
async def list_underpayments(
    organization_id: str = Query(...),
    claim_id: str | None = Query(default=None),
    since: str | None = Query(default=None),
    limit: int = Query(default=500, ge=1, le=5000),
):
    """Scan paid charges for underpayments against expected amounts.

    ``since`` accepts ISO (2024-01-15), US (01/15/2024) or X12 (20240115) dates.
    """
    since_date = parse_flexible_date(since)
    if since and since_date is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {since}")

    try:
        detector = UnderpaymentDetector(get_billing_store(DB_PATH))
        findings = detector.scan_charges(
            organization_id, claim_id=claim_id, since=since_date, limit=limit
        )
    except Exception as e:
        logger.error(f"Underpayment scan failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Underpayment scan failed: {str(e)[:200]}")

    return {
        "underpayments": [finding.to_dict() for finding in findings],
        "count": len(findings),
        "total_underpaid": round(sum(f.underpaid_amount for f in findings), 2),
        "potential_recovery": round(sum(f.recovery_amount for f in findings), 2),
        "by_payer": summarize_by_payer(findings),
    }


@router.post("/fee-schedule")
async def add_fee_schedule_item(request: FeeScheduleRequest, organization_id: str = Query(...)):
    """Add an expected allowed amount used as the underpayment baseline."""
    if request.end_date and request.end_date < request.effective_date:
        raise HTTPException(status_code=400, detail="end_date is before effective_date")

    item = get_billing_store(DB_PATH).add_fee_schedule_item(
        FeeScheduleItem(
            organization_id=organization_id,
            cpt_code=request.cpt_code,
            allowed_amount=request.allowed_amount,
            effective_date=request.effective_date,
            end_date=request.end_date,
            payer_id=request.payer_id,
        )
    )
    return {
        "id": item.id,
        "cpt_code": item.cpt_code,
        "allowed_amount": item.allowed_amount,
        "effective_date": item.effective_date.isoformat(),
        "end_date": item.end_date.isoformat() if item.end_date else None,
        "payer_id": item.payer_id,
    }

"""Claim validation, 837P generation and claim lifecycle routes.

Claims can be encoded without being stored (validate / generate), or stored
as drafts and moved through their lifecycle. Generating an 837P for an
organization and patient records the claim as submitted under the
interchange control number.
"""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, HTTPException, Query

import config
from billing import (
    Charge,
    Claim,
    ClaimStatus,
    InvalidTransitionError,
    RecordNotFoundError,
    get_billing_store,
)
from config import DB_PATH
from edi import EDI837Config, EDI837Parser, generate_837p, load_submitter_config, validate_claim
from schemas import ChargeCreateRequest, ClaimStatusUpdate, ClaimSubmissionRequest, EDIContentRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/claims", tags=["claims"])


def _submitter_config() -> EDI837Config:
    """Submitter profile from EDI_SUBMITTER_CONFIG, else environment defaults."""
    if config.EDI_SUBMITTER_CONFIG:
        return load_submitter_config(config.EDI_SUBMITTER_CONFIG)
    return EDI837Config.from_env()


def _record_submission(
    organization_id: str,
    patient_id: str,
    request: ClaimSubmissionRequest,
    control_number: str,
) -> Claim:
    store = get_billing_store(DB_PATH)
    claim = store.find_claim_by_number(organization_id, request.claim.claim_number)
    if claim is None:
        claim = store.add_claim(Claim.from_submission(organization_id, patient_id, request))
    return store.update_claim_status(
        organization_id, claim.id, ClaimStatus.SUBMITTED, control_number=control_number
    )


@router.post("/validate")
async def validate_claim_request(request: ClaimSubmissionRequest):
    """Check a claim against the 837P business rules without encoding it."""
    return validate_claim(request).to_dict()


@router.post("/generate-837")
async def generate_claim_edi(
    request: ClaimSubmissionRequest,
    organization_id: str | None = Query(default=None),
    patient_id: str | None = Query(default=None),
):
    """Encode a claim as an 837P interchange.

    When both ``organization_id`` and ``patient_id`` are given and encoding
    succeeds, the claim is stored (if new) and marked submitted.
    """
    try:
        result = generate_837p(request, _submitter_config())
    except Exception as e:
        logger.error(f"Failed to generate 837P: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate 837P: {str(e)[:200]}")

    response = result.to_dict()
    if not result.success or not (organization_id and patient_id):
        return response

    try:
        claim = _record_submission(organization_id, patient_id, request, result.control_number)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to record submitted claim: {e}", exc_info=True)
        raise HTTPException(
            status_code=500, detail=f"Failed to record submitted claim: {str(e)[:200]}"
        )

    response["claim"] = claim.to_dict()
    return response


@router.post("/decode-837")
async def decode_claim_edi(request: EDIContentRequest):
    """Parse 837P text back into claim records."""
    try:
        records = EDI837Parser().parse_content(request.content)
    except Exception as e:
        logger.error(f"Failed to decode 837: {e}", exc_info=True)
        raise HTTPException(status_code=400, detail=f"Failed to decode 837: {str(e)[:200]}")

    return {"claims": [record.to_dict() for record in records], "count": len(records)}


@router.post("")
async def create_claim(
    request: ClaimSubmissionRequest,
    organization_id: str = Query(...),
    patient_id: str = Query(...),
):
    """Store a draft claim and create a pending charge for each line."""
    store = get_billing_store(DB_PATH)
    try:
        claim = store.add_claim(Claim.from_submission(organization_id, patient_id, request))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.IntegrityError:
        raise HTTPException(
            status_code=409, detail=f"Claim number already exists: {request.claim.claim_number}"
        )
    except Exception as e:
        logger.error(f"Failed to create claim: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create claim: {str(e)[:200]}")

    return claim.to_dict()


@router.get("")
async def list_claims(
    organization_id: str = Query(...),
    status: ClaimStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """List claims for an organization, newest first."""
    claims = get_billing_store(DB_PATH).list_claims(organization_id, status, limit, offset)
    return {"claims": [claim.to_dict() for claim in claims], "count": len(claims)}


@router.post("/charges")
async def create_charge(request: ChargeCreateRequest, organization_id: str = Query(...)):
    """Record a standalone charge on the ledger."""
    charge = Charge(
        organization_id=organization_id,
        patient_id=request.patient_id,
        cpt_code=request.cpt_code,
        fee=request.fee,
        units=request.units,
        service_date=request.service_date,
        claim_id=request.claim_id,
    )
    try:
        charge = get_billing_store(DB_PATH).add_charge(charge)
    except Exception as e:
        logger.error(f"Failed to create charge: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create charge: {str(e)[:200]}")
    return charge.to_dict()


@router.get("/{claim_id}")
async def get_claim(claim_id: str, organization_id: str = Query(...)):
    """Get a claim with its lines."""
    claim = get_billing_store(DB_PATH).get_claim(organization_id, claim_id)
    if claim is None:
        raise HTTPException(status_code=404, detail="Claim not found")
    return claim.to_dict()


@router.post("/{claim_id}/status")
async def update_claim_status(
    claim_id: str, update: ClaimStatusUpdate, organization_id: str = Query(...)
):
    """Move a claim through its lifecycle."""
    try:
        claim = get_billing_store(DB_PATH).update_claim_status(
            organization_id,
            claim_id,
            update.status,
            control_number=update.control_number,
            payer_claim_number=update.payer_claim_number,
        )
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Claim not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return claim.to_dict()

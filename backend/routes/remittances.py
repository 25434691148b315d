"""835 remittance intake, reconciliation and posting routes.

Uploaded remittances are parsed, stored per organization and check number,
matched to submitted claims and then posted to the charge ledger.
"""

import logging

from fastapi import APIRouter, File, HTTPException, Query, Request, UploadFile

from billing import RecordNotFoundError, get_billing_store
from config import DB_PATH
from edi import EDI835ParseResult, Remittance, generate_posting_report, parse_835
from posting import PostingEngine, PostingOptions
from rate_limit import POSTING_RATE_LIMIT, UPLOAD_RATE_LIMIT, limiter
from reconciliation import RemittanceMatcher, match_remittance
from schemas import EDIContentRequest, PostingRequest
from utils import decode_edi_bytes, has_edi_extension, sanitize_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/remittances", tags=["remittances"])

# Upload size cap; real 835 files from a single check are far smaller
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _parse_or_400(content: str, source: str) -> EDI835ParseResult:
    result = parse_835(content)
    if not result.success or result.remittance is None:
        logger.warning(f"Rejected 835 from {source}: {'; '.join(result.errors)}")
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid 835 content", "errors": result.errors},
        )
    return result


def _store_remittance(organization_id: str, remittance: Remittance, warnings: list[str]) -> dict:
    stored = get_billing_store(DB_PATH).save_remittance(organization_id, remittance)
    return {
        "remittance_id": stored.id,
        "check_number": stored.check_number,
        "payer_name": stored.payer_name,
        "claim_count": stored.claim_count,
        "service_count": stored.service_count,
        "total_paid": stored.total_paid,
        "is_processed": stored.is_processed,
        "warnings": warnings,
    }


@router.post("/parse")
async def parse_remittance(request: EDIContentRequest):
    """Parse 835 text without storing it."""
    return parse_835(request.content).to_dict()


@router.post("")
@limiter.limit(UPLOAD_RATE_LIMIT)
async def create_remittance(
    request: Request, body: EDIContentRequest, organization_id: str = Query(...)
):
    """Parse and store 835 text submitted as JSON.

    Rate limited to 10 requests/minute.
    """
    result = _parse_or_400(body.content, "request body")
    try:
        return _store_remittance(organization_id, result.remittance, result.warnings)
    except Exception as e:
        logger.error(f"Failed to store remittance: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to store remittance: {str(e)[:200]}")


@router.post("/upload")
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_remittance(
    request: Request,
    file: UploadFile = File(...),
    organization_id: str = Query(...),
):
    """Upload an 835 file, parse it and store its service lines.

    Rate limited to 10 requests/minute. Re-uploading a check replaces only
    the line items that have not been posted yet.
    """
    filename = sanitize_filename(file.filename)
    if not has_edi_extension(filename):
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {filename}")

    raw = await file.read()
    if len(raw) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    content = decode_edi_bytes(raw)

    result = _parse_or_400(content, filename)
    try:
        response = _store_remittance(organization_id, result.remittance, result.warnings)
    except Exception as e:
        logger.error(f"Failed to store remittance {filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to store remittance: {str(e)[:200]}")

    logger.info(f"Uploaded remittance {filename} as {response['remittance_id']}")
    response["filename"] = filename
    return response


@router.get("")
async def list_remittances(
    organization_id: str = Query(...),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """List stored remittances, newest first."""
    remittances = get_billing_store(DB_PATH).list_remittances(organization_id, limit, offset)
    return {"remittances": remittances, "count": len(remittances)}


@router.get("/{remittance_id}")
async def get_remittance(remittance_id: str, organization_id: str = Query(...)):
    """Get a remittance header with its line items."""
    store = get_billing_store(DB_PATH)
    header = store.get_remittance(organization_id, remittance_id)
    if header is None:
        raise HTTPException(status_code=404, detail="Remittance not found")
    items = store.list_line_items(organization_id, remittance_id)
    return {**header, "line_items": [item.to_dict() for item in items]}


@router.get("/{remittance_id}/line-items")
async def list_line_items(
    remittance_id: str,
    organization_id: str = Query(...),
    unposted_only: bool = Query(default=False),
):
    """List line items with their match and posting state."""
    store = get_billing_store(DB_PATH)
    if store.get_remittance(organization_id, remittance_id) is None:
        raise HTTPException(status_code=404, detail="Remittance not found")
    items = store.list_line_items(organization_id, remittance_id, unposted_only=unposted_only)
    return {"line_items": [item.to_dict() for item in items], "count": len(items)}


@router.get("/{remittance_id}/report")
async def get_posting_report(remittance_id: str, organization_id: str = Query(...)):
    """Summarize payments and adjustments by group and reason code."""
    try:
        remittance = get_billing_store(DB_PATH).load_remittance(organization_id, remittance_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Remittance not found")
    return generate_posting_report(remittance).to_dict()


@router.post("/{remittance_id}/match")
async def match_remittance_lines(remittance_id: str, organization_id: str = Query(...)):
    """Match unposted line items to claims and charges."""
    store = get_billing_store(DB_PATH)
    try:
        summary = match_remittance(store, RemittanceMatcher(store), organization_id, remittance_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Remittance not found")
    except Exception as e:
        logger.error(f"Failed to match remittance {remittance_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to match remittance: {str(e)[:200]}")
    return summary.to_dict()


@router.post("/{remittance_id}/post")
@limiter.limit(POSTING_RATE_LIMIT)
async def post_remittance(
    request: Request,
    remittance_id: str,
    body: PostingRequest,
    organization_id: str = Query(...),
):
    """Post matched line items as payments and adjustments.

    Rate limited to 10 requests/minute. Line items that are already posted
    are skipped, so retrying a request never double-posts.
    """
    engine = PostingEngine(get_billing_store(DB_PATH))
    options = PostingOptions(
        post_adjustments=body.post_adjustments,
        create_patient_responsibility=body.create_patient_responsibility,
    )
    try:
        result = engine.post_remittance(
            organization_id,
            remittance_id,
            line_item_ids=body.line_item_ids,
            options=options,
            posted_by=body.posted_by,
        )
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Remittance not found")
    except Exception as e:
        logger.error(f"Failed to post remittance {remittance_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to post remittance: {str(e)[:200]}")
    return result.to_dict()

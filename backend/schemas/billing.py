"""Request models for remittance, posting and ledger endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field, field_validator

from billing.models import ClaimStatus


class EDIContentRequest(BaseModel):
    """Raw X12 text submitted in a JSON body."""

    content: str = Field(..., min_length=1)


class ClaimStatusUpdate(BaseModel):
    status: ClaimStatus
    payer_claim_number: str | None = None
    control_number: str | None = None


class PostingRequest(BaseModel):
    line_item_ids: list[str] | None = None
    post_adjustments: bool = True
    create_patient_responsibility: bool = False
    posted_by: str = "system"


class ChargeCreateRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    cpt_code: str = Field(..., min_length=1)
    fee: float = Field(..., ge=0)
    units: float = Field(default=1, gt=0)
    service_date: date | None = None
    claim_id: str | None = None


class FeeScheduleRequest(BaseModel):
    cpt_code: str = Field(..., min_length=1)
    allowed_amount: float = Field(..., ge=0)
    effective_date: date
    end_date: date | None = None
    payer_id: str | None = None

    @field_validator("cpt_code")
    @classmethod
    def normalize_cpt(cls, v: str) -> str:
        return v.strip().upper()

"""Pydantic schemas for API request validation."""

from .billing import (
    ChargeCreateRequest,
    ClaimStatusUpdate,
    EDIContentRequest,
    FeeScheduleRequest,
    PostingRequest,
)
from .claims import ClaimSubmissionRequest

__all__ = [
    "ChargeCreateRequest",
    "ClaimStatusUpdate",
    "ClaimSubmissionRequest",
    "EDIContentRequest",
    "FeeScheduleRequest",
    "PostingRequest",
]

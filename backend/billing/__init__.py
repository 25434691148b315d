"""Claim lifecycle and payment ledger persistence."""

from .models import (
    Charge,
    ChargeStatus,
    Claim,
    ClaimLine,
    ClaimStatus,
    FeeScheduleItem,
    InvalidTransitionError,
    Payment,
    PaymentAllocation,
    RecordNotFoundError,
    RemittanceLineItem,
)
from .store import BillingStore, get_billing_store

__all__ = [
    "BillingStore",
    "get_billing_store",
    "Charge",
    "ChargeStatus",
    "Claim",
    "ClaimLine",
    "ClaimStatus",
    "FeeScheduleItem",
    "InvalidTransitionError",
    "Payment",
    "PaymentAllocation",
    "RecordNotFoundError",
    "RemittanceLineItem",
]

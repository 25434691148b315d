"""Denial and underpayment detection for remittances and charges."""

from .denials import detect_denials, summarize_denials
from .engine import scan_remittance_findings
from .models import (
    DenialFinding,
    DenialWorkflow,
    DetectionHit,
    DetectionResult,
    UnderpaymentFinding,
)
from .thresholds import UnderpaymentThresholds
from .underpayments import UnderpaymentDetector, evaluate_underpayment, summarize_by_payer

__all__ = [
    "detect_denials",
    "evaluate_underpayment",
    "scan_remittance_findings",
    "summarize_by_payer",
    "summarize_denials",
    "DenialFinding",
    "DenialWorkflow",
    "DetectionHit",
    "DetectionResult",
    "UnderpaymentDetector",
    "UnderpaymentFinding",
    "UnderpaymentThresholds",
]

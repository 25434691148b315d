"""Combined denial and underpayment pass over a stored remittance."""

from __future__ import annotations

from billing.store import BillingStore

from .denials import detect_denials
from .models import DetectionResult
from .thresholds import UnderpaymentThresholds
from .underpayments import UnderpaymentDetector


def scan_remittance_findings(
    store: BillingStore,
    organization_id: str,
    remittance_id: str,
    thresholds: UnderpaymentThresholds | None = None,
) -> DetectionResult:
    """Evaluate a remittance for denials and underpayments and return aggregated hits."""

    remittance = store.load_remittance(organization_id, remittance_id)
    result = DetectionResult()

    for finding in detect_denials(remittance):
        result.add_hit(finding.to_hit())

    detector = UnderpaymentDetector(store, thresholds)
    for finding in detector.scan_remittance(organization_id, remittance):
        result.add_hit(finding.to_hit())

    return result

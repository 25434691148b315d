"""Tests for denial and underpayment detection."""

from datetime import date

import pytest

from billing import FeeScheduleItem
from conftest import ORG_ID, SAMPLE_CLAIM_SEGMENTS, build_835
from detection import (
    DenialWorkflow,
    UnderpaymentDetector,
    UnderpaymentThresholds,
    detect_denials,
    evaluate_underpayment,
    scan_remittance_findings,
    summarize_by_payer,
    summarize_denials,
)
from detection.underpayments import recovery_likelihood, underpayment_reason
from edi import parse_835
from edi.reason_codes import DenialCategory
from posting import PostingEngine
from reconciliation import RemittanceMatcher, match_remittance


@pytest.fixture
def fee_schedule(store):
    """99214 expected at 100.00 from 2024 onward."""
    return store.add_fee_schedule_item(FeeScheduleItem(ORG_ID, "99214", 100.0, date(2024, 1, 1)))


class TestDetectDenials:
    """Test cases for detect_denials."""

    def test_medical_necessity_denial(self, sample_835):
        findings = detect_denials(parse_835(sample_835).remittance)
        assert len(findings) == 1
        finding = findings[0]
        assert finding.cpt_code == "87880"
        assert finding.denial_code == "CO-50"
        assert finding.category == DenialCategory.MEDICAL_NECESSITY
        assert not finding.is_correctable
        assert finding.workflow == DenialWorkflow.APPEAL
        assert finding.priority == "medium"
        assert finding.denied_amount == 100.0
        assert finding.remark_codes == ("N130",)
        assert finding.patient_account_number == "CLM-1001"

    def test_partial_denial_uses_coded_amount(self):
        content = build_835(
            ["CLP*A2*1*300*200*0*12*P2~", "SVC*HC:99215*300*200**1~", "CAS*CO*97*100~"],
            payment_amount="200",
        )
        finding = detect_denials(parse_835(content).remittance)[0]
        assert finding.category == DenialCategory.BUNDLING
        assert finding.denied_amount == 100.0
        assert finding.is_correctable
        assert finding.workflow == DenialWorkflow.CORRECT_AND_RESUBMIT

    def test_unpaid_line_without_reason(self):
        content = build_835(
            ["CLP*A3*1*20*0*20*12*P3~", "SVC*HC:99211*20*0**1~", "CAS*PR*1*20~"], payment_amount="0"
        )
        finding = detect_denials(parse_835(content).remittance)[0]
        assert finding.denial_code == ""
        assert finding.category == DenialCategory.OTHER
        assert finding.workflow == DenialWorkflow.WRITE_OFF
        assert finding.priority == "low"

    def test_denied_claim_without_lines(self):
        content = build_835(["CLP*A4*4*1500*0*0*12*P4~", "CAS*CO*29*1500~"], payment_amount="0")
        finding = detect_denials(parse_835(content).remittance)[0]
        assert finding.category == DenialCategory.TIMELY_FILING
        assert finding.denied_amount == 1500.0
        assert finding.priority == "high"
        assert finding.workflow == DenialWorkflow.ESCALATE

    def test_eligibility_is_patient_responsibility(self):
        content = build_835(
            ["CLP*A5*4*80*0*0*12*P5~", "SVC*HC:99212*80*0**1~", "CAS*CO*27*80~"], payment_amount="0"
        )
        finding = detect_denials(parse_835(content).remittance)[0]
        assert finding.workflow == DenialWorkflow.PATIENT_RESPONSIBILITY

    def test_stored_remittance_keeps_claim_level_denials(self, store):
        content = build_835(
            [
                *SAMPLE_CLAIM_SEGMENTS,
                "CLP*A4*4*1500*0*0*12*P4~",
                "CAS*CO*29*1500~",
                "MOA***MA130~",
            ]
        )
        fresh = detect_denials(parse_835(content).remittance)
        saved = store.save_remittance(ORG_ID, parse_835(content).remittance)
        stored = detect_denials(store.load_remittance(ORG_ID, saved.id))

        assert [f.denial_code for f in fresh] == ["CO-50", "CO-29"]
        assert stored == fresh
        assert stored[1].remark_codes == ("MA130",)

    def test_summary(self, sample_835):
        summary = summarize_denials(detect_denials(parse_835(sample_835).remittance))
        assert summary["total_denials"] == 1
        assert summary["total_denied_amount"] == 100.0
        assert summary["correctable_count"] == 0
        assert summary["by_category"] == [
            {"category": "medical_necessity", "count": 1, "amount": 100.0, "percentage": 100.0}
        ]
        assert summary["by_code"][0]["code"] == "CO-50"


class TestEvaluateUnderpayment:
    """Test cases for the underpayment heuristics."""

    def test_flags_fee_schedule_reduction(self):
        finding = evaluate_underpayment(150.0, 100.0, 70.0, ["CO-45", "PR-2"], "BLUE CROSS")
        assert finding.underpaid_amount == 30.0
        assert finding.underpaid_percent == 30.0
        assert finding.recovery_likelihood == 0.6
        assert finding.recovery_amount == 18.0
        assert finding.recovery_tier == "medium"
        assert finding.reason == "Payment reduced to fee schedule maximum"

    def test_below_thresholds(self):
        assert evaluate_underpayment(150.0, 100.0, 96.0) is None
        assert evaluate_underpayment(150.0, 100.0, 120.0) is None

    def test_custom_thresholds(self):
        thresholds = UnderpaymentThresholds(min_percent=1.0, min_amount=1.0)
        assert evaluate_underpayment(150.0, 100.0, 96.0, thresholds=thresholds) is not None

    def test_recovery_likelihood(self):
        assert recovery_likelihood(["CO-97"], 10) == 0.7
        assert recovery_likelihood(["PR-1"], 10) == 0.3
        assert recovery_likelihood(["CO-45"], 40, "STATE MEDICAID") == 0.7
        assert recovery_likelihood(["PR-1"], 10, "MEDICAID") == 0.15

    def test_likelihood_is_clamped(self):
        assert recovery_likelihood(["CO-97"], 60) == 0.85
        assert UnderpaymentThresholds.clamp_likelihood(0.95) == 0.9
        assert UnderpaymentThresholds.clamp_likelihood(0.01) == 0.1

    def test_reason_by_percent(self):
        assert underpayment_reason([], 55) == "Significant underpayment - recommend contract review"
        assert underpayment_reason([], 20) == "Minor underpayment - may be within variance"
        assert underpayment_reason(["CO-97"], 5) == "Bundled with another service - review CCI edits"


class TestUnderpaymentDetector:
    """Test cases for remittance and charge scans."""

    def test_fee_schedule_basis(self, store, fee_schedule, sample_835):
        remittance = parse_835(sample_835).remittance
        findings = UnderpaymentDetector(store).scan_remittance(ORG_ID, remittance)
        assert len(findings) == 1
        finding = findings[0]
        assert finding.calculation_basis == "fee_schedule"
        assert finding.cpt_code == "99214"
        assert finding.expected_amount == 100.0
        assert finding.underpaid_amount == 30.0
        assert finding.line_number == 1
        assert finding.patient_account_number == "CLM-1001"

    def test_billed_ratio_fallback(self, store, sample_835):
        findings = UnderpaymentDetector(store).scan_remittance(ORG_ID, parse_835(sample_835).remittance)
        finding = findings[0]
        assert finding.calculation_basis == "billed_ratio"
        assert finding.expected_amount == 120.0
        assert finding.underpaid_amount == 50.0

    def test_expected_amount_order(self, store, fee_schedule):
        detector = UnderpaymentDetector(store)
        assert detector.expected_amount(ORG_ID, "99214", date(2024, 2, 1), 150.0) == (100.0, "fee_schedule")
        assert detector.expected_amount(ORG_ID, "99214", date(2023, 2, 1), 150.0) == (120.0, "billed_ratio")
        assert detector.expected_amount(ORG_ID, None, None, 50.0) == (40.0, "billed_ratio")

    def test_scan_posted_charges(self, store, fee_schedule, stored_claim, stored_remittance):
        match_remittance(store, RemittanceMatcher(store), ORG_ID, stored_remittance.id)
        PostingEngine(store).post_remittance(ORG_ID, stored_remittance.id)

        findings = UnderpaymentDetector(store).scan_charges(ORG_ID, claim_id=stored_claim.id)
        assert len(findings) == 1
        finding = findings[0]
        assert finding.charge_id == stored_claim.lines[0].charge_id
        assert finding.claim_id == stored_claim.id
        assert finding.payer_name == "Blue Cross"
        assert finding.adjustment_codes == ("CO-45", "PR-2")
        assert finding.recovery_amount == 18.0

    def test_summarize_by_payer(self):
        findings = [
            evaluate_underpayment(150.0, 100.0, 70.0, payer_name="A"),
            evaluate_underpayment(150.0, 100.0, 80.0, payer_name="A"),
            evaluate_underpayment(150.0, 100.0, 40.0, payer_name=None),
        ]
        summary = summarize_by_payer(findings)
        assert summary == [
            {"payer_name": "Unknown Payer", "total_underpaid": 60.0, "count": 1, "avg_underpaid_percent": 60.0},
            {"payer_name": "A", "total_underpaid": 50.0, "count": 2, "avg_underpaid_percent": 25.0},
        ]


class TestScanRemittanceFindings:
    def test_combined_result(self, store, fee_schedule, stored_remittance):
        result = scan_remittance_findings(store, ORG_ID, stored_remittance.id)
        data = result.to_dict()
        assert data["denial_count"] == 1
        assert data["underpayment_count"] == 1
        assert data["total_denied"] == 100.0
        assert data["total_underpaid"] == 30.0
        assert data["potential_recovery"] == 18.0
        kinds = {hit["kind"]: hit for hit in data["hits"]}
        assert kinds["denial"]["flag"] == "CO-50"
        assert kinds["underpayment"]["flag"] == "fee_schedule"

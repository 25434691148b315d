"""Tests for the remittance posting report."""

from conftest import ORG_ID, SAMPLE_CLAIM_SEGMENTS, build_835
from edi import generate_posting_report, parse_835


class TestPostingReport:
    """Test cases for generate_posting_report."""

    def test_summary(self, sample_835):
        report = generate_posting_report(parse_835(sample_835).remittance)
        summary = report.summary
        assert summary.total_claims == 1
        assert summary.total_service_lines == 2
        assert summary.total_charged == 250.0
        assert summary.total_paid == 70.0
        assert summary.total_contractual_adjustment == 130.0
        assert summary.total_patient_responsibility == 50.0
        assert summary.total_denied == 100.0
        assert summary.unposted_lines == 2
        assert summary.posted_lines == 0

    def test_adjustment_breakdown_sorted_by_amount(self, sample_835):
        report = generate_posting_report(parse_835(sample_835).remittance)
        assert [(item.code, item.total_amount) for item in report.adjustment_breakdown] == [
            ("CO-50", 100.0),
            ("PR-2", 50.0),
            ("CO-45", 30.0),
        ]
        co45 = report.adjustment_breakdown[-1]
        assert co45.category == "Contractual Obligation"
        assert co45.description == "Charge exceeds fee schedule/maximum allowable"
        assert co45.occurrences == 1

    def test_claim_details(self, sample_835):
        report = generate_posting_report(parse_835(sample_835).remittance)
        detail = report.claim_details[0]
        assert detail["patient_account_number"] == "CLM-1001"
        assert detail["claim_total"] == {"charged": 250.0, "paid": 70.0, "adjusted": 130.0, "patient_amount": 50.0}
        assert len(detail["services"]) == 2

    def test_header_and_serialization(self, sample_835):
        data = generate_posting_report(parse_835(sample_835).remittance).to_dict()
        assert data["check_number"] == "CHK12345"
        assert data["check_date"] == "2024-02-01"
        assert data["payer_name"] == "BLUE CROSS"
        assert data["summary"]["total_denied"] == 100.0
        assert data["adjustment_breakdown"][0]["code"] == "CO-50"

    def test_missing_payer_name(self):
        content = build_835(["CLP*A*1*10*10*0*12*P~", "SVC*HC:99211*10*10**1~"], payment_amount="10")
        content = content.replace("N1*PR*BLUE CROSS*XV*BCBS01~", "N1*PR**XV*BCBS01~")
        report = generate_posting_report(parse_835(content).remittance)
        assert report.payer_name == "Unknown Payer"

    def test_stored_remittance_gives_same_totals(self, store, stored_remittance, sample_835):
        rebuilt = store.load_remittance(ORG_ID, stored_remittance.id)
        fresh = generate_posting_report(parse_835(sample_835).remittance)
        stored = generate_posting_report(rebuilt)
        assert stored.summary == fresh.summary
        assert stored.adjustment_breakdown == fresh.adjustment_breakdown
        assert stored.remittance_id == stored_remittance.id

    def test_claim_without_lines_survives_storage(self, store):
        content = build_835(
            [
                *SAMPLE_CLAIM_SEGMENTS,
                "CLP*A4*4*1500*0*0*12*P4~",
                "CAS*CO*29*1500~",
                "MOA***MA130~",
            ]
        )
        fresh = generate_posting_report(parse_835(content).remittance)
        saved = store.save_remittance(ORG_ID, parse_835(content).remittance)
        stored = generate_posting_report(store.load_remittance(ORG_ID, saved.id))

        assert fresh.summary.total_claims == 2
        assert stored.summary == fresh.summary
        assert stored.claim_details == fresh.claim_details
        assert stored.adjustment_breakdown == fresh.adjustment_breakdown

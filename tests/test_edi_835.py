"""Tests for the 835 remittance parser."""

from datetime import date

from conftest import SAMPLE_CLAIM_SEGMENTS, build_835
from edi import EDI835Parser, is_835_content, parse_835
from edi.reason_codes import DenialCategory, denial_category, describe_carc, split_adjustment_code


class TestParse835:
    """Test cases for parsing a well-formed 835."""

    def test_header_fields(self, sample_835):
        result = parse_835(sample_835)
        assert result.success
        remittance = result.remittance
        assert remittance.check_number == "CHK12345"
        assert remittance.check_date == date(2024, 2, 1)
        assert remittance.payer_name == "BLUE CROSS"
        assert remittance.payer_id == "BCBS01"
        assert remittance.payee_name == "SPRINGFIELD FAMILY PRACTICE"
        assert remittance.payment_method == "ACH"
        assert remittance.payment_amount == 70.0

    def test_no_warnings_for_balanced_file(self, sample_835):
        assert parse_835(sample_835).warnings == []

    def test_totals_come_from_service_lines(self, sample_835):
        remittance = parse_835(sample_835).remittance
        assert remittance.total_paid == 70.0
        assert remittance.total_adjusted == 130.0
        assert remittance.total_charges == 250.0
        assert remittance.claim_count == 1
        assert remittance.service_count == 2

    def test_claim_payment(self, sample_835):
        claim = parse_835(sample_835).remittance.claims[0]
        assert claim.patient_account_number == "CLM-1001"
        assert claim.payer_claim_number == "PAYERCLM001"
        assert claim.patient_name == "DOE, JANE"
        assert claim.patient_identifier == "XYZ123456"
        assert claim.status_code == "1"
        assert claim.paid_amount == 70.0
        assert claim.patient_responsibility == 50.0

    def test_service_lines(self, sample_835):
        first, second = parse_835(sample_835).remittance.claims[0].services
        assert first.cpt_code == "99214"
        assert first.modifiers == ["25"]
        assert first.service_date == date(2024, 1, 15)
        assert first.charged_amount == 150.0
        assert first.paid_amount == 70.0
        assert first.allowed_amount == 120.0
        assert first.adjusted_amount == 30.0
        assert first.patient_amount == 50.0
        assert first.adjustment_reason_codes == ["CO-45", "PR-2"]

        assert second.cpt_code == "87880"
        assert second.paid_amount == 0.0
        assert second.adjusted_amount == 100.0
        assert second.allowed_amount == 0.0
        assert second.remark_codes == ["N130"]
        assert (first.line_number, second.line_number) == (1, 2)

    def test_claim_level_adjustments(self):
        content = build_835(
            ["CLP*ACCT9*4*80*0*0*12*PCN9~", "CAS*CO*29*80~"], payment_amount="0"
        )
        remittance = parse_835(content).remittance
        claim = remittance.claims[0]
        assert claim.services == []
        assert [adj.code for adj in claim.adjustments] == ["CO-29"]
        assert remittance.total_adjusted == 80.0

    def test_multiple_cas_triplets(self):
        content = build_835(
            [
                "CLP*ACCT2*1*200*100*40*12*PCN2~",
                "SVC*HC:99213*200*100**1~",
                "CAS*CO*45*50**253*10~",
                "CAS*PR*1*30**2*10~",
            ],
            payment_amount="100",
        )
        service = parse_835(content).remittance.claims[0].services[0]
        assert service.adjustment_amounts() == {"CO-45": 50.0, "CO-253": 10.0, "PR-1": 30.0, "PR-2": 10.0}
        assert service.adjusted_amount == 60.0
        assert service.patient_amount == 40.0

    def test_provider_level_adjustment(self):
        content = build_835(
            [*SAMPLE_CLAIM_SEGMENTS, "PLB*1234567893*20241231*WO:INV77*20~"], payment_amount="50"
        )
        result = parse_835(content)
        plb = result.remittance.provider_adjustments[0]
        assert plb.reason_code == "WO"
        assert plb.reference == "INV77"
        assert plb.amount == 20.0
        assert result.warnings == []

    def test_custom_delimiters(self, sample_835):
        content = sample_835.replace("*", "|").replace("~", "'").replace(":", ">")
        result = parse_835(content)
        assert result.success
        assert result.remittance.claims[0].services[0].modifiers == ["25"]

    def test_newline_terminated_segments(self, sample_835):
        result = parse_835(sample_835.replace("~", ""))
        assert result.success
        assert result.warnings == []
        remittance = result.remittance
        assert remittance.check_number == "CHK12345"
        assert remittance.total_paid == 70.0
        assert [svc.cpt_code for svc in remittance.claims[0].services] == ["99214", "87880"]
        assert remittance.claims[0].services[1].remark_codes == ["N130"]


class TestParse835Warnings:
    """Malformed input degrades to warnings, never exceptions."""

    def test_unbalanced_service_line(self):
        content = build_835(["CLP*ACCT3*1*100*50*0*12*PCN3~", "SVC*HC:99212*100*50**1~"], payment_amount="50")
        result = parse_835(content)
        assert result.success
        assert any("amounts don't balance" in w for w in result.warnings)

    def test_bpr_mismatch(self, sample_835):
        content = sample_835.replace("BPR*I*70*", "BPR*I*75*")
        warnings = parse_835(content).warnings
        assert any("BPR payment amount 75.00" in w for w in warnings)

    def test_unknown_segment(self):
        content = build_835([*SAMPLE_CLAIM_SEGMENTS, "ZZZ*1~"])
        warnings = parse_835(content).warnings
        assert any("(ZZZ): unrecognized segment skipped" in w for w in warnings)

    def test_service_outside_claim(self):
        content = build_835(["SVC*HC:99212*100*50**1~"], payment_amount="0")
        result = parse_835(content)
        assert result.success
        assert any("service line outside of a claim payment" in w for w in result.warnings)
        assert result.remittance.claims == []

    def test_missing_trace_number(self, sample_835):
        content = sample_835.replace("TRN*1*CHK12345*1234567890~", "TRN*1~")
        result = parse_835(content)
        assert "Remittance has no check/EFT trace number (TRN02)" in result.warnings

    def test_check_date_falls_back_to_production_date(self, sample_835):
        content = sample_835.replace("*654321*20240201~", "*654321~").replace("DTM*405*20240201", "DTM*405*20240203")
        assert parse_835(content).remittance.check_date == date(2024, 2, 3)


class TestParse835Failures:
    def test_empty_content(self):
        result = EDI835Parser().parse("   ")
        assert not result.success
        assert result.errors == ["Empty EDI content provided"]

    def test_not_an_835(self):
        result = parse_835("ST*837*0001~BHT*0019*00*1~SE*3*0001~")
        assert not result.success
        assert result.remittance is None
        assert "Not a valid 835" in result.errors[0]

    def test_is_835_content(self, sample_835):
        assert is_835_content(sample_835)
        assert not is_835_content("ST*837*0001~")
        assert not is_835_content("")


class TestReasonCodes:
    def test_split_adjustment_code(self):
        assert split_adjustment_code("CO-45") == ("CO", "45")
        assert split_adjustment_code("45") == ("", "45")

    def test_describe_carc(self):
        assert describe_carc("CO-45") == "Charge exceeds fee schedule/maximum allowable"
        assert describe_carc("ZZ-999") == "Unknown"

    def test_denial_category(self):
        assert denial_category("CO-50") == DenialCategory.MEDICAL_NECESSITY
        assert denial_category("CO-45") is None

"""Tests for 837P validation, encoding and decoding."""

from __future__ import annotations

from datetime import datetime

import pytest

from edi.edi_837 import (
    ControlNumberSequence,
    EDI837Config,
    EDI837Encoder,
    EDI837Parser,
    generate_837p,
    npi_checksum_valid,
    validate_claim,
)
from schemas.claims import ClaimSubmissionRequest

FIXED_NOW = datetime(2024, 2, 1, 12, 30)


@pytest.fixture
def edi_config() -> EDI837Config:
    return EDI837Config(
        sender_id="SUBMITTER",
        receiver_id="CLEARINGHOUSE",
        submitter_name="BILLING SUBMITTER",
        submitter_id="SUBMITTER",
        submitter_contact_name="Pat Biller",
        submitter_contact_phone="1 (555) 123-4567",
    )


@pytest.fixture
def encoder(edi_config: EDI837Config) -> EDI837Encoder:
    return EDI837Encoder(
        edi_config, control_numbers=ControlNumberSequence(seed=41), clock=lambda: FIXED_NOW
    )


def _segments(content: str) -> list[str]:
    return [line for line in content.split("\n") if line]


def _by_id(content: str, segment_id: str) -> list[str]:
    return [s for s in _segments(content) if s.startswith(segment_id + "*")]


class TestNpiChecksum:
    def test_valid_npi(self):
        assert npi_checksum_valid("1234567893")

    def test_invalid_check_digit(self):
        assert not npi_checksum_valid("1234567890")

    def test_wrong_length(self):
        assert not npi_checksum_valid("12345")


class TestValidateClaim:
    """Test cases for validate_claim."""

    def test_complete_claim_is_valid(self, claim_request: ClaimSubmissionRequest):
        result = validate_claim(claim_request)
        assert result.is_valid
        assert result.errors == []
        assert "No secondary insurance on file" in result.warnings

    def test_missing_patient_fields(self, claim_request_data):
        claim_request_data["patient"]["firstName"] = ""
        claim_request_data["patient"]["dateOfBirth"] = None
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert not result.is_valid
        assert "Patient first name is required" in result.errors
        assert "Patient date of birth is required" in result.errors

    def test_npi_must_be_ten_digits(self, claim_request_data):
        claim_request_data["provider"]["npi"] = "12345"
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert any("NPI must be 10 digits" in e for e in result.errors)

    def test_npi_check_digit_is_a_warning(self, claim_request_data):
        claim_request_data["provider"]["npi"] = "1234567890"
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert result.is_valid
        assert any("check digit" in w for w in result.warnings)

    def test_diagnosis_pointer_out_of_range(self, claim_request_data):
        claim_request_data["claim"]["services"][1]["diagnosisPointers"] = [3]
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert "Service line 2: Invalid diagnosis pointer 3 (must be 1-2)" in result.errors

    def test_zero_pointer_rejected(self, claim_request_data):
        claim_request_data["claim"]["services"][0]["diagnosisPointers"] = [0]
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert any("Invalid diagnosis pointer 0" in e for e in result.errors)

    def test_total_must_equal_line_sum(self, claim_request_data):
        claim_request_data["claim"]["totalCharges"] = 300.00
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert any("do not equal the sum of service line charges 250.00" in e for e in result.errors)

    def test_service_line_requirements(self, claim_request_data):
        line = claim_request_data["claim"]["services"][0]
        line["cptCode"] = ""
        line["units"] = 0
        line["serviceDateFrom"] = None
        line["modifiers"] = ["25", "59", "XU", "GT", "95"]
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert "Service line 1: CPT code is required" in result.errors
        assert "Service line 1: Units must be greater than zero" in result.errors
        assert "Service line 1: Service date is required" in result.errors
        assert "Service line 1: At most 4 modifiers are allowed" in result.errors

    def test_dependent_requires_subscriber_name(self, claim_request_data):
        claim_request_data["insurance"]["relationshipCode"] = "19"
        result = validate_claim(ClaimSubmissionRequest.model_validate(claim_request_data))
        assert "Subscriber name is required when the patient is not the subscriber" in result.errors

    def test_empty_claim_collects_all_errors(self):
        request = ClaimSubmissionRequest.model_validate(
            {"patient": {}, "insurance": {}, "provider": {}, "claim": {}}
        )
        result = validate_claim(request)
        assert not result.is_valid
        assert "Payer ID is required" in result.errors
        assert "Claim number is required" in result.errors
        assert "At least one diagnosis code is required" in result.errors
        assert "At least one service line is required" in result.errors


class TestEDI837Encoder:
    """Test cases for EDI837Encoder output structure."""

    def test_envelope(self, encoder: EDI837Encoder, claim_request: ClaimSubmissionRequest):
        result = encoder.encode(claim_request)
        assert result.success
        assert result.control_number == "000000042"

        segments = _segments(result.edi_content)
        isa = segments[0]
        assert len(isa) == 106
        assert isa.split("*")[13] == "000000042"
        assert segments[1] == "GS*HC*SUBMITTER*CLEARINGHOUSE*20240201*1230*42*X*005010X222A1~"
        assert segments[2] == "ST*837*000000042*005010X222A1~"
        assert segments[3] == "BHT*0019*00*000000042*20240201*1230*CH~"
        assert segments[-2] == "GE*1*42~"
        assert segments[-1] == "IEA*1*000000042~"
        assert result.segment_count == len(segments)

    def test_se_counts_transaction_segments(self, encoder, claim_request):
        segments = _segments(encoder.encode(claim_request).edi_content)
        st_index = next(i for i, s in enumerate(segments) if s.startswith("ST*"))
        se_index = next(i for i, s in enumerate(segments) if s.startswith("SE*"))
        assert segments[se_index] == f"SE*{se_index - st_index + 1}*000000042~"

    def test_submitter_contact(self, encoder, claim_request):
        content = encoder.encode(claim_request).edi_content
        assert _by_id(content, "PER") == ["PER*IC*Pat Biller*TE*5551234567~"]

    def test_billing_provider_loop(self, encoder, claim_request):
        content = encoder.encode(claim_request).edi_content
        assert "HL*1**20*1~" in _segments(content)
        assert "PRV*BI*PXC*207Q00000X~" in _segments(content)
        assert "NM1*85*2*Springfield Family Practice*****XX*1234567893~" in _segments(content)
        assert "REF*EI*123456789~" in _segments(content)

    def test_self_insured_has_no_patient_loop(self, encoder, claim_request):
        content = encoder.encode(claim_request).edi_content
        assert "HL*2*1*22*0~" in _segments(content)
        assert not _by_id(content, "PAT")
        assert "NM1*IL*1*Doe*Jane****MI*XYZ123456~" in _segments(content)
        assert "DMG*D8*19800515*F~" in _segments(content)

    def test_dependent_patient_loop(self, encoder, claim_request_data):
        claim_request_data["insurance"]["relationshipCode"] = "19"
        claim_request_data["insurance"]["subscriber"] = {
            "firstName": "John",
            "lastName": "Doe",
            "dateOfBirth": "1975-03-02",
            "gender": "M",
        }
        request = ClaimSubmissionRequest.model_validate(claim_request_data)
        content = encoder.encode(request).edi_content
        segments = _segments(content)
        assert "HL*2*1*22*1~" in segments
        assert "HL*3*2*23*0~" in segments
        assert "PAT*19~" in segments
        assert "NM1*IL*1*Doe*John****MI*XYZ123456~" in segments
        assert "NM1*QC*1*Doe*Jane~" in segments

    def test_claim_and_diagnoses(self, encoder, claim_request):
        segments = _segments(encoder.encode(claim_request).edi_content)
        assert "CLM*CLM-1001*250.00***11:B:1*Y*A*Y*Y~" in segments
        assert "HI*ABK:J069*ABF:M545~" in segments
        assert "DTP*431*D8*20240115~" in segments

    def test_service_lines(self, encoder, claim_request):
        content = encoder.encode(claim_request).edi_content
        assert _by_id(content, "LX") == ["LX*1~", "LX*2~"]
        assert _by_id(content, "SV1") == [
            "SV1*HC:99214:25*150.00*UN*1*11**1:2~",
            "SV1*HC:87880*100.00*UN*1*11**1~",
        ]
        assert _by_id(content, "DTP").count("DTP*472*D8*20240115~") == 2

    def test_service_date_range(self, encoder, claim_request_data):
        claim_request_data["claim"]["services"][0]["serviceDateTo"] = "2024-01-17"
        content = encoder.encode(ClaimSubmissionRequest.model_validate(claim_request_data)).edi_content
        assert "DTP*472*RD8*20240115-20240117~" in _segments(content)

    def test_delimiters_stripped_from_values(self, encoder, claim_request_data):
        claim_request_data["patient"]["lastName"] = "O*Brien~"
        content = encoder.encode(ClaimSubmissionRequest.model_validate(claim_request_data)).edi_content
        assert "NM1*IL*1*OBrien*Jane****MI*XYZ123456~" in _segments(content)

    def test_explicit_control_number(self, encoder, claim_request):
        result = encoder.encode(claim_request, control_number="7")
        assert result.control_number == "000000007"


class TestControlNumberSequence:
    def test_monotonic(self):
        sequence = ControlNumberSequence(seed=5)
        assert sequence.next() == "000000006"
        assert sequence.next() == "000000007"

    def test_wraps_within_nine_digits(self):
        sequence = ControlNumberSequence(seed=999_999_999)
        assert sequence.next() == "000000001"


class TestGenerate837p:
    """Test cases for the validate-then-encode entry point."""

    def test_invalid_claim_produces_no_content(self, claim_request_data, edi_config):
        claim_request_data["claim"]["diagnoses"] = []
        result = generate_837p(ClaimSubmissionRequest.model_validate(claim_request_data), edi_config)
        assert not result.success
        assert result.edi_content == ""
        assert "At least one diagnosis code is required" in result.errors

    def test_valid_claim_carries_validation_warnings(self, claim_request, edi_config):
        result = generate_837p(claim_request, edi_config, control_number="123")
        assert result.success
        assert result.control_number == "000000123"
        assert "No secondary insurance on file" in result.warnings

    def test_uses_environment_defaults(self, claim_request):
        result = generate_837p(claim_request)
        assert result.success
        assert "*SUBMITTER" in result.edi_content.split("\n")[0]


class TestEDI837Parser:
    """Test cases for decoding generated and hand-written 837 files."""

    def test_round_trip_claim_fields(self, encoder, claim_request):
        records = EDI837Parser().parse_content(encoder.encode(claim_request).edi_content)
        assert len(records) == 1
        record = records[0]
        assert record.claim_id == "CLM-1001"
        assert record.claim_type == "837P"
        assert record.total_charge == 250.0
        assert record.place_of_service == "11"
        assert record.frequency_code == "1"
        assert record.diagnosis_codes == ["J06.9", "M54.5"]
        assert record.principal_diagnosis == "J06.9"
        assert record.billing_npi == "1234567893"
        assert record.billing_tax_id == "123456789"
        assert record.payer_id == "BCBS01"
        assert record.payer_name == "Blue Cross"

    def test_round_trip_patient(self, encoder, claim_request):
        record = EDI837Parser().parse_content(encoder.encode(claim_request).edi_content)[0]
        data = record.to_dict()
        assert data["patient_name"] == "Jane Doe"
        assert data["patient_dob"] == "1980-05-15"
        assert data["patient_gender"] == "Female"
        assert data["patient_city"] == "Springfield"
        assert data["subscriber_id"] == "XYZ123456"

    def test_round_trip_service_lines(self, encoder, claim_request):
        record = EDI837Parser().parse_content(encoder.encode(claim_request).edi_content)[0]
        first, second = record.service_lines
        assert first["procedure_code"] == "99214"
        assert first["modifiers"] == ["25"]
        assert first["charge_amount"] == 150.0
        assert first["units"] == 1.0
        assert first["diagnosis_pointers"] == [1, 2]
        assert first["service_from_date"] == "2024-01-15"
        assert second["procedure_code"] == "87880"
        assert second["line_number"] == 2

    def test_multiple_claims_share_billing_provider(self):
        content = "\n".join(
            [
                "ST*837*0001*005010X222A1~",
                "HL*1**20*1~",
                "NM1*85*2*CLINIC*****XX*1234567893~",
                "HL*2*1*22*0~",
                "NM1*IL*1*SMITH*ANN****MI*M1~",
                "NM1*PR*2*PAYER A*****PI*P1~",
                "CLM*A1*100***11:B:1*Y*A*Y*Y~",
                "HI*ABK:R05~",
                "LX*1~",
                "SV1*HC:99213*100*UN*1***1~",
                "HL*3*1*22*0~",
                "NM1*IL*1*JONES*BOB****MI*M2~",
                "NM1*PR*2*PAYER B*****PI*P2~",
                "CLM*B1*80***11:B:1*Y*A*Y*Y~",
                "HI*ABK:J101~",
                "LX*1~",
                "SV1*HC:99212*80*UN*1***1~",
                "SE*16*0001~",
            ]
        )
        first, second = EDI837Parser().parse_content(content)
        assert (first.claim_id, first.patient_last_name, first.payer_id) == ("A1", "SMITH", "P1")
        assert (second.claim_id, second.patient_last_name, second.payer_id) == ("B1", "JONES", "P2")
        assert first.billing_npi == second.billing_npi == "1234567893"
        assert second.diagnosis_codes == ["J10.1"]

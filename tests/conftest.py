"""Pytest configuration and fixtures."""

from __future__ import annotations

import atexit
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import pytest

# Add backend to path for imports
backend_path = str(Path(__file__).parent.parent / "backend")
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

# Set test database path before importing app
# Use a temp file instead of :memory: for SQLite compatibility with FastAPI
_temp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_temp_db_path = _temp_db.name
os.environ["DB_PATH"] = _temp_db_path


def _cleanup_test_db() -> None:
    """Clean up temporary test database file."""
    if os.path.exists(_temp_db_path):
        try:
            os.unlink(_temp_db_path)
        except OSError:
            pass  # File may already be deleted or locked


# Register cleanup to run at exit
atexit.register(_cleanup_test_db)

ORG_ID = "org-1"
PATIENT_ID = "patient-1"


def build_isa(control_number: str = "000000001", sender: str = "PAYERID", receiver: str = "PROVIDERID") -> str:
    """Fixed-width ISA segment with ``~`` terminator."""
    return (
        "*".join(
            [
                "ISA",
                "00",
                " " * 10,
                "00",
                " " * 10,
                "ZZ",
                sender.ljust(15),
                "ZZ",
                receiver.ljust(15),
                "240201",
                "1200",
                "^",
                "00501",
                control_number,
                "0",
                "P",
                ":",
            ]
        )
        + "~"
    )


def build_835(claim_segments: list[str], payment_amount: str = "70", check_number: str = "CHK12345") -> str:
    """Wrap claim payment segments in a complete 835 interchange."""
    segments = [
        build_isa(),
        "GS*HP*PAYERID*PROVIDERID*20240201*1200*1*X*005010X221A1~",
        "ST*835*0001~",
        f"BPR*I*{payment_amount}*C*ACH*CCP*01*999999999*DA*123456*1234567890**01*888888888*DA*654321*20240201~",
        f"TRN*1*{check_number}*1234567890~",
        "DTM*405*20240201~",
        "N1*PR*BLUE CROSS*XV*BCBS01~",
        "N1*PE*SPRINGFIELD FAMILY PRACTICE*XX*1234567893~",
        "LX*1~",
        *claim_segments,
        "SE*20*0001~",
        "GE*1*1~",
        "IEA*1*000000001~",
    ]
    return "\n".join(segments)


# One claim payment for CLM-1001: 99214 partly paid, 87880 denied for medical necessity
SAMPLE_CLAIM_SEGMENTS = [
    "CLP*CLM-1001*1*250*70*50*12*PAYERCLM001~",
    "NM1*QC*1*DOE*JANE****MI*XYZ123456~",
    "SVC*HC:99214:25*150*70**1~",
    "DTM*472*20240115~",
    "CAS*CO*45*30~",
    "CAS*PR*2*50~",
    "AMT*B6*120~",
    "SVC*HC:87880*100*0**1~",
    "DTM*472*20240115~",
    "CAS*CO*50*100~",
    "LQ*HE*N130~",
]


@pytest.fixture
def claim_request_data() -> dict[str, Any]:
    """A complete, valid professional claim submission."""
    return {
        "patient": {
            "firstName": "Jane",
            "lastName": "Doe",
            "dateOfBirth": "1980-05-15",
            "gender": "F",
            "address": {"line1": "123 Main St", "city": "Springfield", "state": "IL", "zip": "62701"},
        },
        "insurance": {
            "payerId": "BCBS01",
            "payerName": "Blue Cross",
            "subscriberId": "XYZ123456",
            "groupNumber": "GRP001",
            "relationshipCode": "18",
        },
        "provider": {
            "npi": "1234567893",
            "taxId": "12-3456789",
            "name": "Springfield Family Practice",
            "taxonomyCode": "207Q00000X",
            "address": {"line1": "500 Clinic Way", "city": "Springfield", "state": "IL", "zip": "62702"},
        },
        "claim": {
            "claimNumber": "CLM-1001",
            "totalCharges": 250.00,
            "placeOfService": "11",
            "diagnoses": [{"code": "j06.9"}, {"code": "M54.5"}],
            "services": [
                {
                    "lineNumber": 1,
                    "cptCode": "99214",
                    "modifiers": ["25"],
                    "units": 1,
                    "chargeAmount": 150.00,
                    "serviceDateFrom": "2024-01-15",
                    "diagnosisPointers": [1, 2],
                },
                {
                    "lineNumber": 2,
                    "cptCode": "87880",
                    "units": 1,
                    "chargeAmount": 100.00,
                    "serviceDateFrom": "2024-01-15",
                    "diagnosisPointers": [1],
                },
            ],
        },
    }


@pytest.fixture
def claim_request(claim_request_data: dict[str, Any]):
    from schemas.claims import ClaimSubmissionRequest

    return ClaimSubmissionRequest.model_validate(claim_request_data)


@pytest.fixture
def sample_835() -> str:
    """835 paying CLM-1001: 70.00 on 99214, nothing on 87880."""
    return build_835(SAMPLE_CLAIM_SEGMENTS)


@pytest.fixture
def store(tmp_path: Path):
    """Empty billing store on a per-test database."""
    from billing import BillingStore

    return BillingStore(str(tmp_path / "billing.db"))


@pytest.fixture
def stored_claim(store, claim_request):
    """CLM-1001 stored and submitted, with one pending charge per line."""
    from billing import Claim, ClaimStatus

    claim = store.add_claim(Claim.from_submission(ORG_ID, PATIENT_ID, claim_request))
    return store.update_claim_status(ORG_ID, claim.id, ClaimStatus.SUBMITTED, control_number="000000042")


@pytest.fixture
def stored_remittance(store, sample_835):
    """The sample 835 parsed and saved."""
    from edi import parse_835

    result = parse_835(sample_835)
    assert result.success
    return store.save_remittance(ORG_ID, result.remittance)

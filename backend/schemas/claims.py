"""Pydantic schemas for claim submission and 837P generation.

Fields are deliberately permissive (blank strings and zero amounts are
accepted) so that incomplete claims reach ``validate_claim`` and come back
with a readable list of errors instead of a request parsing failure.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class _RequestModel(BaseModel):
    """Accept both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Address(_RequestModel):
    line1: str = ""
    line2: str | None = None
    city: str = ""
    state: str = ""
    zip: str = ""


class PatientInfo(_RequestModel):
    first_name: str = ""
    last_name: str = ""
    date_of_birth: date | None = None
    gender: str | None = None
    address: Address | None = None


class SubscriberInfo(_RequestModel):
    first_name: str = ""
    last_name: str = ""
    date_of_birth: date | None = None
    gender: str | None = None


class InsuranceInfo(_RequestModel):
    payer_id: str = ""
    payer_name: str = ""
    subscriber_id: str = ""
    group_number: str | None = None
    relationship_code: str | None = None
    subscriber: SubscriberInfo | None = None
    secondary_payer_id: str | None = None
    secondary_payer_name: str | None = None


class ProviderInfo(_RequestModel):
    npi: str = ""
    tax_id: str | None = None
    name: str = ""
    taxonomy_code: str | None = None
    address: Address | None = None


class DiagnosisEntry(_RequestModel):
    code: str
    sequence: int = 0
    is_primary: bool = False

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Uppercase ICD-10 codes and strip whitespace."""
        return v.strip().upper()


class ServiceLineEntry(_RequestModel):
    line_number: int = 0
    cpt_code: str = ""
    modifiers: list[str] = []
    description: str | None = None
    units: float = 1
    charge_amount: float = 0.0
    service_date_from: date | None = None
    service_date_to: date | None = None
    diagnosis_pointers: list[int] = []
    place_of_service: str | None = None

    @field_validator("modifiers")
    @classmethod
    def normalize_modifiers(cls, v: list[str]) -> list[str]:
        """Drop blank modifiers and uppercase the rest."""
        return [m.strip().upper() for m in v if m and m.strip()]


class ClaimInfo(_RequestModel):
    id: str | None = None
    claim_number: str = ""
    total_charges: float = 0.0
    claim_type: str = "professional"
    place_of_service: str | None = None
    frequency_code: str = "1"
    diagnoses: list[DiagnosisEntry] = []
    services: list[ServiceLineEntry] = []


class ClaimSubmissionRequest(_RequestModel):
    """Everything needed to build one 837P claim."""

    patient: PatientInfo
    insurance: InsuranceInfo
    provider: ProviderInfo
    claim: ClaimInfo

"""EDI 837P claim generation and decoding.

Builds ANSI X12 837 Professional (005010X222A1) claim files from a
``ClaimSubmissionRequest`` and decodes 837P/837I files back into structured
claim records.

Segment Reference:
- ISA: Interchange Control Header
- GS: Functional Group Header
- ST: Transaction Set Header (837 start)
- BHT: Beginning of Hierarchical Transaction
- NM1: Name segment (submitter, receiver, provider, subscriber, patient, payer)
- PER: Submitter contact
- HL: Hierarchical level (20 billing provider, 22 subscriber, 23 patient)
- PRV: Billing provider taxonomy
- N3/N4: Address segments
- REF: Reference (EI = tax id)
- SBR: Subscriber information
- PAT: Patient relationship
- DMG: Demographic info
- CLM: Claim information
- DTP: Date/time periods
- HI: Health care diagnosis information
- LX: Service line number
- SV1/SV2: Professional/Institutional service lines
- SE: Transaction Set Trailer
- GE: Functional Group Trailer
- IEA: Interchange Control Trailer
"""

from __future__ import annotations

import copy
import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Iterator

import config

from .segments import DEFAULT_DELIMITERS, Delimiters, EDISegment, SegmentStream, detect_delimiters

if TYPE_CHECKING:
    from schemas.claims import ClaimSubmissionRequest, ServiceLineEntry

logger = logging.getLogger(__name__)

IMPLEMENTATION_GUIDE = "005010X222A1"
INTERCHANGE_VERSION = "00501"
DEFAULT_PLACE_OF_SERVICE = "11"
MAX_MODIFIERS = 4
MAX_DIAGNOSES = 12

RELATIONSHIP_SELF = "18"
RELATIONSHIP_CODES = {
    "SELF": "18",
    "18": "18",
    "SPOUSE": "01",
    "01": "01",
    "CHILD": "19",
    "19": "19",
}
RELATIONSHIP_OTHER = "G8"


@dataclass(frozen=True)
class EDI837Config:
    """Sender/receiver settings for the interchange envelope."""

    sender_id: str
    receiver_id: str
    submitter_name: str
    submitter_id: str
    sender_id_qualifier: str = "ZZ"
    receiver_id_qualifier: str = "ZZ"
    app_sender_id: str = ""
    app_receiver_id: str = ""
    submitter_contact_name: str | None = None
    submitter_contact_phone: str | None = None
    submitter_contact_email: str | None = None
    usage_indicator: str = "P"
    version_id: str = IMPLEMENTATION_GUIDE
    claim_filing_indicator: str = "CI"

    @property
    def application_sender(self) -> str:
        return self.app_sender_id or self.sender_id

    @property
    def application_receiver(self) -> str:
        return self.app_receiver_id or self.receiver_id

    @classmethod
    def from_env(cls) -> "EDI837Config":
        """Build a config from environment-driven defaults in ``config``."""
        return cls(
            sender_id=config.EDI_SENDER_ID,
            receiver_id=config.EDI_RECEIVER_ID,
            submitter_name=config.EDI_SUBMITTER_NAME,
            submitter_id=config.EDI_SUBMITTER_ID,
            usage_indicator=config.EDI_USAGE_INDICATOR,
        )


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


@dataclass
class EDI837Result:
    """Outcome of encoding one claim; never partially successful."""

    success: bool
    edi_content: str = ""
    control_number: str = ""
    segment_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "edi_content": self.edi_content,
            "control_number": self.control_number,
            "segment_count": self.segment_count,
            "errors": self.errors,
            "warnings": self.warnings,
        }


class ControlNumberSequence:
    """Process-wide monotonic interchange control numbers.

    Seeded from the clock so restarts do not reuse recent numbers; wraps
    within the nine digits ISA13 allows.
    """

    MODULUS = 10**9

    def __init__(self, seed: int | None = None) -> None:
        if seed is None:
            seed = int(time.time() * 10) % self.MODULUS
        self._value = seed
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            self._value = self._value % (self.MODULUS - 1) + 1
            return f"{self._value:09d}"


default_control_numbers = ControlNumberSequence()


def npi_checksum_valid(npi: str) -> bool:
    """Luhn check of an NPI using the 80840 card issuer prefix."""
    if not re.fullmatch(r"\d{10}", npi or ""):
        return False
    digits = [int(d) for d in "80840" + npi]
    total = 0
    for i, digit in enumerate(reversed(digits)):
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def is_patient_subscriber(request: ClaimSubmissionRequest) -> bool:
    code = (request.insurance.relationship_code or "").upper()
    return code in ("", "18", "SELF")


def validate_claim(request: ClaimSubmissionRequest) -> ValidationResult:
    """Validate claim data before 837P generation.

    Errors block submission; warnings are informational. Diagnosis pointers
    are 1-based positions into the claim's diagnosis list.
    """
    errors: list[str] = []
    warnings: list[str] = []
    patient = request.patient
    insurance = request.insurance
    provider = request.provider
    claim = request.claim

    # Patient
    if not patient.first_name.strip():
        errors.append("Patient first name is required")
    if not patient.last_name.strip():
        errors.append("Patient last name is required")
    if not patient.date_of_birth:
        errors.append("Patient date of birth is required")
    if not patient.gender:
        warnings.append("Patient gender is missing")
    address = patient.address
    if not address or not address.line1:
        warnings.append("Patient address is missing")
    if not address or not address.city:
        warnings.append("Patient city is missing")
    if not address or not address.state:
        warnings.append("Patient state is missing")
    if not address or not address.zip:
        warnings.append("Patient ZIP code is missing")

    # Insurance
    if not insurance.payer_id:
        errors.append("Payer ID is required")
    if not insurance.payer_name:
        errors.append("Payer name is required")
    if not insurance.subscriber_id:
        errors.append("Subscriber ID is required")
    if not insurance.relationship_code:
        warnings.append("Relationship code is missing, defaulting to SELF")
    elif not is_patient_subscriber(request):
        subscriber = insurance.subscriber
        if not subscriber or not subscriber.first_name or not subscriber.last_name:
            errors.append("Subscriber name is required when the patient is not the subscriber")
    if not insurance.secondary_payer_id:
        warnings.append("No secondary insurance on file")

    # Provider
    npi = (provider.npi or "").strip()
    if not npi:
        errors.append("Provider NPI is required")
    elif not re.fullmatch(r"\d{10}", npi):
        errors.append(f"Provider NPI must be 10 digits (got {npi!r})")
    elif not npi_checksum_valid(npi):
        warnings.append(f"Provider NPI {npi} fails the check digit test")
    if not provider.name:
        errors.append("Provider name is required")
    if not provider.tax_id:
        warnings.append("Provider Tax ID is missing")
    if not provider.address or not provider.address.line1:
        warnings.append("Provider address is missing")

    # Claim
    if not claim.claim_number:
        errors.append("Claim number is required")
    if not claim.diagnoses:
        errors.append("At least one diagnosis code is required")
    elif len(claim.diagnoses) > MAX_DIAGNOSES:
        errors.append(f"At most {MAX_DIAGNOSES} diagnosis codes are allowed (got {len(claim.diagnoses)})")
    if not claim.services:
        errors.append("At least one service line is required")
    if not claim.place_of_service:
        warnings.append(f"Place of service is missing, defaulting to {DEFAULT_PLACE_OF_SERVICE}")

    max_dx = len(claim.diagnoses)
    for index, service in enumerate(claim.services, start=1):
        label = f"Service line {index}"
        if not service.cpt_code.strip():
            errors.append(f"{label}: CPT code is required")
        if not service.service_date_from:
            errors.append(f"{label}: Service date is required")
        if service.units <= 0:
            errors.append(f"{label}: Units must be greater than zero")
        if service.charge_amount <= 0:
            errors.append(f"{label}: Charge amount must be greater than zero")
        if len(service.modifiers) > MAX_MODIFIERS:
            errors.append(f"{label}: At most {MAX_MODIFIERS} modifiers are allowed")
        if not service.diagnosis_pointers:
            errors.append(f"{label}: At least one diagnosis pointer is required")
        for pointer in service.diagnosis_pointers:
            if pointer < 1 or pointer > max_dx:
                errors.append(
                    f"{label}: Invalid diagnosis pointer {pointer} (must be 1-{max_dx})"
                )

    if claim.services:
        line_total = round(sum(s.charge_amount for s in claim.services), 2)
        if abs(round(claim.total_charges, 2) - line_total) > 0.005:
            errors.append(
                f"Total charges {claim.total_charges:.2f} do not equal the sum of "
                f"service line charges {line_total:.2f}"
            )

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def _format_amount(value: float) -> str:
    return f"{value:.2f}"


def _format_quantity(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _digits(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def _format_phone(phone: str | None) -> str:
    digits = _digits(phone)
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits[:10]


def _gender_code(gender: str | None) -> str:
    g = (gender or "").upper()
    if g in ("M", "MALE"):
        return "M"
    if g in ("F", "FEMALE"):
        return "F"
    return "U"


def _relationship_code(relationship: str | None) -> str:
    if not relationship:
        return RELATIONSHIP_SELF
    return RELATIONSHIP_CODES.get(relationship.upper(), RELATIONSHIP_OTHER)


class _Composite(str):
    """An element already joined with the component separator."""


class EDI837Encoder:
    """Serializes a claim submission into 837P text.

    The encoder does not validate; call ``validate_claim`` first, or use
    ``generate_837p`` which does both.
    """

    def __init__(
        self,
        edi_config: EDI837Config,
        delimiters: Delimiters = DEFAULT_DELIMITERS,
        control_numbers: ControlNumberSequence | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the encoder.

        Args:
            edi_config: Interchange sender/receiver settings
            delimiters: Separator characters (default: ~ * : ^)
            control_numbers: Control number source (default: process-wide)
            clock: Timestamp source for envelope dates
        """
        self.config = edi_config
        self.delimiters = delimiters
        self.control_numbers = control_numbers or default_control_numbers
        self.clock = clock
        self._segments: list[str] = []
        self._hl_counter = 0
        self._strip = re.compile(
            "[" + re.escape(delimiters.segment + delimiters.element + delimiters.subelement + delimiters.repetition) + "]"
        )

    def encode(
        self, request: ClaimSubmissionRequest, control_number: str | None = None
    ) -> EDI837Result:
        """Encode one claim.

        Args:
            request: Claim submission request
            control_number: Optional explicit control number (digits)

        Returns:
            EDI837Result with content, or ``success=False`` and no content
        """
        self._segments = []
        self._hl_counter = 0
        ctrl = (control_number or self.control_numbers.next()).zfill(9)[-9:]

        try:
            now = self.clock()
            self._isa(ctrl, now)
            self._gs(ctrl, now)
            st_index = len(self._segments)
            self._add("ST", "837", ctrl, IMPLEMENTATION_GUIDE)
            self._add("BHT", "0019", "00", ctrl, _format_date(now), now.strftime("%H%M"), "CH")
            self._loop_1000a()
            self._loop_1000b(request)
            billing_hl = self._loop_2000a(request)
            subscriber_hl = self._loop_2000b(request, billing_hl)
            if not is_patient_subscriber(request):
                self._loop_2000c(request, subscriber_hl)
            self._loop_2300(request)
            self._add("SE", str(len(self._segments) - st_index + 1), ctrl)
            self._add("GE", "1", str(int(ctrl)))
            self._add("IEA", "1", ctrl)
        except Exception as e:
            logger.error(f"837P encoding failed for claim {request.claim.claim_number}: {e}", exc_info=True)
            return EDI837Result(
                success=False,
                control_number=ctrl,
                errors=[f"EDI generation failed: {e}"],
            )

        # One segment per line; parsers strip the line breaks
        content = "\n".join(self._segments)
        logger.info(
            f"Encoded 837P claim {request.claim.claim_number} "
            f"control={ctrl} segments={len(self._segments)}"
        )
        return EDI837Result(
            success=True,
            edi_content=content,
            control_number=ctrl,
            segment_count=len(self._segments),
        )

    def _clean(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, _Composite):
            return str(value)
        text = str(value).replace("\r", " ").replace("\n", " ")
        return self._strip.sub("", text).strip()

    def _add(self, segment_id: str, *elements: Any) -> None:
        values = [self._clean(e) for e in elements]
        while values and not values[-1]:
            values.pop()
        self._segments.append(
            self.delimiters.element.join([segment_id, *values]) + self.delimiters.segment
        )

    def _composite(self, *parts: str) -> _Composite:
        cleaned = (self._clean(p) for p in parts)
        return _Composite(self.delimiters.subelement.join(p for p in cleaned if p))

    def _next_hl(self) -> int:
        self._hl_counter += 1
        return self._hl_counter

    def _isa(self, ctrl: str, now: datetime) -> None:
        """ISA is fixed width, so it bypasses cleaning and trailing trim."""
        cfg = self.config
        sep = self.delimiters.element
        elements = [
            "ISA",
            "00",
            " " * 10,
            "00",
            " " * 10,
            cfg.sender_id_qualifier.ljust(2)[:2],
            cfg.sender_id.ljust(15)[:15],
            cfg.receiver_id_qualifier.ljust(2)[:2],
            cfg.receiver_id.ljust(15)[:15],
            now.strftime("%y%m%d"),
            now.strftime("%H%M"),
            self.delimiters.repetition,
            INTERCHANGE_VERSION,
            ctrl,
            "0",
            cfg.usage_indicator[:1] or "P",
            self.delimiters.subelement,
        ]
        self._segments.append(sep.join(elements) + self.delimiters.segment)

    def _gs(self, ctrl: str, now: datetime) -> None:
        self._add(
            "GS",
            "HC",
            self.config.application_sender,
            self.config.application_receiver,
            _format_date(now),
            now.strftime("%H%M"),
            str(int(ctrl)),
            "X",
            self.config.version_id,
        )

    def _loop_1000a(self) -> None:
        """Submitter name and contact."""
        cfg = self.config
        self._add("NM1", "41", "2", cfg.submitter_name, "", "", "", "", "46", cfg.submitter_id)
        per = ["IC", cfg.submitter_contact_name or "BILLING DEPT"]
        phone = _format_phone(cfg.submitter_contact_phone)
        if phone:
            per += ["TE", phone]
        if cfg.submitter_contact_email:
            per += ["EM", cfg.submitter_contact_email]
        self._add("PER", *per)

    def _loop_1000b(self, request: ClaimSubmissionRequest) -> None:
        """Receiver name."""
        insurance = request.insurance
        self._add("NM1", "40", "2", insurance.payer_name, "", "", "", "", "PI", insurance.payer_id)

    def _address(self, address) -> None:
        if not address:
            return
        self._add("N3", address.line1, address.line2)
        self._add("N4", address.city, address.state, _digits(address.zip))

    def _loop_2000a(self, request: ClaimSubmissionRequest) -> int:
        """Billing provider level and 2010AA name."""
        provider = request.provider
        hl_id = self._next_hl()
        self._add("HL", str(hl_id), "", "20", "1")
        if provider.taxonomy_code:
            self._add("PRV", "BI", "PXC", provider.taxonomy_code)
        self._add("NM1", "85", "2", provider.name, "", "", "", "", "XX", provider.npi.strip())
        self._address(provider.address)
        if provider.tax_id:
            self._add("REF", "EI", _digits(provider.tax_id))
        return hl_id

    def _loop_2000b(self, request: ClaimSubmissionRequest, parent_hl: int) -> int:
        """Subscriber level, 2010BA subscriber name and 2010BB payer name."""
        insurance = request.insurance
        patient = request.patient
        self_insured = is_patient_subscriber(request)
        hl_id = self._next_hl()
        self._add("HL", str(hl_id), str(parent_hl), "22", "0" if self_insured else "1")
        self._add(
            "SBR",
            "P",
            RELATIONSHIP_SELF if self_insured else "",
            insurance.group_number,
            "",
            "",
            "",
            "",
            "",
            self.config.claim_filing_indicator,
        )

        if self_insured:
            first_name, last_name = patient.first_name, patient.last_name
        else:
            subscriber = insurance.subscriber
            first_name = subscriber.first_name if subscriber else ""
            last_name = subscriber.last_name if subscriber else ""
        self._add("NM1", "IL", "1", last_name, first_name, "", "", "", "MI", insurance.subscriber_id)

        if self_insured:
            self._address(patient.address)
            self._add("DMG", "D8", _format_date(patient.date_of_birth), _gender_code(patient.gender))
        elif insurance.subscriber and insurance.subscriber.date_of_birth:
            subscriber = insurance.subscriber
            self._add(
                "DMG", "D8", _format_date(subscriber.date_of_birth), _gender_code(subscriber.gender)
            )

        self._add("NM1", "PR", "2", insurance.payer_name, "", "", "", "", "PI", insurance.payer_id)
        return hl_id

    def _loop_2000c(self, request: ClaimSubmissionRequest, parent_hl: int) -> int:
        """Patient level when the patient is not the subscriber."""
        patient = request.patient
        hl_id = self._next_hl()
        self._add("HL", str(hl_id), str(parent_hl), "23", "0")
        self._add("PAT", _relationship_code(request.insurance.relationship_code))
        self._add("NM1", "QC", "1", patient.last_name, patient.first_name)
        self._address(patient.address)
        self._add("DMG", "D8", _format_date(patient.date_of_birth), _gender_code(patient.gender))
        return hl_id

    def _loop_2300(self, request: ClaimSubmissionRequest) -> None:
        """Claim information, diagnoses and service lines."""
        claim = request.claim
        pos = claim.place_of_service or DEFAULT_PLACE_OF_SERVICE
        self._add(
            "CLM",
            claim.claim_number,
            _format_amount(claim.total_charges),
            "",
            "",
            self._composite(pos, "B", claim.frequency_code or "1"),
            "Y",
            "A",
            "Y",
            "Y",
        )

        dates = [s.service_date_from for s in claim.services if s.service_date_from]
        if dates:
            self._add("DTP", "431", "D8", _format_date(min(dates)))

        self._diagnoses(request)
        for line_number, service in enumerate(claim.services, start=1):
            self._loop_2400(request, service, line_number)

    def _diagnoses(self, request: ClaimSubmissionRequest) -> None:
        """HI with ABK principal then ABF additional codes, dots removed.

        List order is kept so that service line pointers stay aligned.
        """
        diagnoses = request.claim.diagnoses[:MAX_DIAGNOSES]
        if not diagnoses:
            return
        elements = []
        for index, dx in enumerate(diagnoses):
            qualifier = "ABK" if index == 0 else "ABF"
            elements.append(self._composite(qualifier, dx.code.replace(".", "")))
        self._add("HI", *elements)

    def _loop_2400(
        self, request: ClaimSubmissionRequest, service: ServiceLineEntry, line_number: int
    ) -> None:
        self._add("LX", str(line_number))
        procedure = self._composite("HC", service.cpt_code.strip(), *service.modifiers[:MAX_MODIFIERS])
        pointers = self._composite(*(str(p) for p in service.diagnosis_pointers)) or "1"
        self._add(
            "SV1",
            procedure,
            _format_amount(service.charge_amount),
            "UN",
            _format_quantity(service.units),
            service.place_of_service or request.claim.place_of_service or DEFAULT_PLACE_OF_SERVICE,
            "",
            pointers,
        )

        start = service.service_date_from
        end = service.service_date_to or start
        if start and end and end != start:
            self._add("DTP", "472", "RD8", f"{_format_date(start)}-{_format_date(end)}")
        elif start:
            self._add("DTP", "472", "D8", _format_date(start))


def generate_837p(
    request: ClaimSubmissionRequest,
    edi_config: EDI837Config | None = None,
    control_number: str | None = None,
    delimiters: Delimiters = DEFAULT_DELIMITERS,
) -> EDI837Result:
    """Validate, then encode, a claim.

    Returns ``success=False`` with the validation errors and no content when
    the claim does not validate.
    """
    validation = validate_claim(request)
    if not validation.is_valid:
        logger.info(
            f"837P generation blocked for claim {request.claim.claim_number or '<none>'}: "
            f"{len(validation.errors)} validation errors"
        )
        return EDI837Result(success=False, errors=validation.errors, warnings=validation.warnings)

    encoder = EDI837Encoder(edi_config or EDI837Config.from_env(), delimiters=delimiters)
    result = encoder.encode(request, control_number)
    result.warnings = validation.warnings + result.warnings
    return result


@dataclass
class ClaimRecord:
    """Parsed claim record from EDI 837."""

    # Claim identifiers
    claim_id: str = ""
    patient_control_number: str = ""
    claim_type: str = "837P"

    # Patient info
    patient_id: str = ""
    patient_first_name: str = ""
    patient_last_name: str = ""
    patient_dob: str = ""
    patient_gender: str = ""
    patient_address: str = ""
    patient_city: str = ""
    patient_state: str = ""
    patient_zip: str = ""
    patient_relationship: str = ""

    # Subscriber info
    subscriber_id: str = ""
    subscriber_first_name: str = ""
    subscriber_last_name: str = ""
    subscriber_dob: str = ""
    subscriber_relationship: str = ""
    group_number: str = ""

    # Provider info
    billing_npi: str = ""
    billing_name: str = ""
    billing_taxonomy: str = ""
    billing_tax_id: str = ""
    billing_address: str = ""
    billing_city: str = ""
    billing_state: str = ""
    billing_zip: str = ""
    rendering_npi: str = ""
    rendering_name: str = ""
    facility_npi: str = ""
    facility_name: str = ""

    # Claim details
    total_charge: float = 0.0
    place_of_service: str = ""
    frequency_code: str = ""
    onset_date: str = ""

    # Diagnosis codes
    diagnosis_codes: list[str] = field(default_factory=list)
    principal_diagnosis: str = ""

    # Service lines
    service_lines: list[dict[str, Any]] = field(default_factory=list)

    # Payer info
    payer_id: str = ""
    payer_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "claim_id": self.claim_id,
            "patient_control_number": self.patient_control_number,
            "claim_type": self.claim_type,
            "patient_id": self.patient_id,
            "patient_first_name": self.patient_first_name,
            "patient_last_name": self.patient_last_name,
            "patient_name": f"{self.patient_first_name} {self.patient_last_name}".strip(),
            "patient_dob": self.patient_dob,
            "patient_gender": self.patient_gender,
            "patient_address": self.patient_address,
            "patient_city": self.patient_city,
            "patient_state": self.patient_state,
            "patient_zip": self.patient_zip,
            "patient_relationship": self.patient_relationship,
            "subscriber_id": self.subscriber_id,
            "subscriber_name": f"{self.subscriber_first_name} {self.subscriber_last_name}".strip(),
            "subscriber_dob": self.subscriber_dob,
            "subscriber_relationship": self.subscriber_relationship,
            "group_number": self.group_number,
            "billing_npi": self.billing_npi,
            "billing_name": self.billing_name,
            "billing_taxonomy": self.billing_taxonomy,
            "billing_tax_id": self.billing_tax_id,
            "billing_address": self.billing_address,
            "billing_city": self.billing_city,
            "billing_state": self.billing_state,
            "billing_zip": self.billing_zip,
            "rendering_npi": self.rendering_npi,
            "rendering_name": self.rendering_name,
            "facility_npi": self.facility_npi,
            "facility_name": self.facility_name,
            "total_charge": self.total_charge,
            "place_of_service": self.place_of_service,
            "frequency_code": self.frequency_code,
            "onset_date": self.onset_date,
            "diagnosis_codes": self.diagnosis_codes,
            "principal_diagnosis": self.principal_diagnosis,
            "service_lines": self.service_lines,
            "payer_id": self.payer_id,
            "payer_name": self.payer_name,
        }


class EDI837Parser:
    """Parser for EDI 837 Professional and Institutional claims.

    Billing provider, subscriber, patient and payer loops precede the CLM
    segment, so their values are collected on a pending record and copied
    into each claim as it starts.
    """

    def parse_content(self, content: str) -> list[ClaimRecord]:
        """Decode every claim in an 837 document."""
        return list(self.iter_claims(content))

    def iter_claims(self, content: str) -> Iterator[ClaimRecord]:
        delimiters = detect_delimiters(content)
        yield from self._parse_segments(SegmentStream(content, delimiters), delimiters.subelement)

    def _parse_segments(self, segments: SegmentStream, subelement_sep: str) -> Iterator[ClaimRecord]:
        """Parse segments into claim records.

        This implements a state machine to track hierarchical loops:
        - Loop 2000A: Billing Provider
        - Loop 2000B: Subscriber
        - Loop 2000C: Patient
        - Loop 2300: Claim
        - Loop 2400: Service Line
        """
        pending = ClaimRecord()
        claim: ClaimRecord | None = None
        current_loop = ""
        service_line: dict[str, Any] = {}
        claim_type = "837P"

        def finish() -> ClaimRecord | None:
            nonlocal claim, service_line
            finished = claim
            if finished is not None:
                if service_line:
                    finished.service_lines.append(service_line)
                # Self-insured: the 2010BA subscriber is the patient
                if not finished.patient_last_name:
                    finished.patient_first_name = finished.subscriber_first_name
                    finished.patient_last_name = finished.subscriber_last_name
                    finished.patient_id = finished.subscriber_id
            claim = None
            service_line = {}
            return finished

        for segment in segments:
            seg_id = segment.id
            target = claim if claim is not None else pending

            # Detect claim type from GS segment
            if seg_id == "GS":
                func_id = segment.get(0)
                if func_id == "HC":
                    claim_type = "837P"
                elif func_id == "HI":
                    claim_type = "837I"

            elif seg_id == "HL":
                done = finish()
                if done:
                    yield done
                level_code = segment.get(2)
                if level_code == "20":
                    current_loop = "2000A"
                    pending = ClaimRecord()
                elif level_code == "22":
                    current_loop = "2000B"
                    pending = self._reset_member(pending)
                elif level_code == "23":
                    current_loop = "2000C"

            elif seg_id == "PRV":
                if current_loop == "2000A":
                    pending.billing_taxonomy = segment.get(2)

            elif seg_id == "SBR":
                pending.subscriber_relationship = segment.get(1)
                pending.group_number = segment.get(2)

            elif seg_id == "PAT":
                pending.patient_relationship = segment.get(0)

            elif seg_id == "NM1":
                self._parse_nm1(segment, segment.get(0), target)

            elif seg_id == "REF":
                ref_qual = segment.get(0)
                ref_value = segment.get(1)
                if ref_qual == "EI" and current_loop == "2000A":
                    pending.billing_tax_id = ref_value
                elif ref_qual == "1L":
                    target.subscriber_id = ref_value
                elif ref_qual == "6R" and current_loop == "2400":
                    service_line["line_item_control_number"] = ref_value

            elif seg_id == "DMG":
                if current_loop in ("2000B", "2000C"):
                    dob = self._parse_date(segment.get(1))
                    gender = segment.get(2)
                    if current_loop == "2000B":
                        pending.subscriber_dob = dob
                    pending.patient_dob = dob
                    pending.patient_gender = {"M": "Male", "F": "Female"}.get(gender, gender)

            elif seg_id == "N3":
                if current_loop == "2000A":
                    pending.billing_address = segment.get(0)
                elif current_loop in ("2000B", "2000C"):
                    pending.patient_address = segment.get(0)

            elif seg_id == "N4":
                if current_loop == "2000A":
                    pending.billing_city = segment.get(0)
                    pending.billing_state = segment.get(1)
                    pending.billing_zip = segment.get(2)
                elif current_loop in ("2000B", "2000C"):
                    pending.patient_city = segment.get(0)
                    pending.patient_state = segment.get(1)
                    pending.patient_zip = segment.get(2)

            elif seg_id == "CLM":
                done = finish()
                if done:
                    yield done

                claim = copy.deepcopy(pending)
                claim.claim_type = claim_type
                claim.patient_control_number = segment.get(0)
                claim.claim_id = segment.get(0)
                try:
                    claim.total_charge = float(segment.get(1, "0"))
                except ValueError:
                    claim.total_charge = 0.0

                facility_info = segment.components(4, subelement_sep)
                claim.place_of_service = facility_info[0] if facility_info else ""
                claim.frequency_code = facility_info[2] if len(facility_info) > 2 else ""
                current_loop = "2300"

            elif seg_id == "HI":
                if claim:
                    for index in range(len(segment.elements)):
                        parts = segment.components(index, subelement_sep)
                        if len(parts) < 2 or not parts[1]:
                            continue
                        diag_code = self._format_icd10(parts[1])
                        claim.diagnosis_codes.append(diag_code)
                        if parts[0] in ("ABK", "BK"):
                            claim.principal_diagnosis = diag_code

            elif seg_id == "DTP":
                qual = segment.get(0)
                value = segment.get(2)
                if claim:
                    if qual == "431":
                        claim.onset_date = self._parse_date(value)
                    elif qual == "472" and current_loop == "2400":
                        if "-" in value:
                            dates = value.split("-")
                            service_line["service_from_date"] = self._parse_date(dates[0])
                            service_line["service_to_date"] = self._parse_date(dates[-1])
                        else:
                            service_line["service_from_date"] = self._parse_date(value)
                            service_line["service_to_date"] = self._parse_date(value)

            elif seg_id == "LX":
                if claim:
                    if service_line:
                        claim.service_lines.append(service_line)
                    service_line = {"line_number": int(segment.get(0) or 0)}
                    current_loop = "2400"

            elif seg_id == "SV1":
                if claim:
                    if "procedure_code" in service_line:
                        claim.service_lines.append(service_line)
                        service_line = {}
                    current_loop = "2400"
                    service_line.update(self._parse_sv1(segment, subelement_sep))

            elif seg_id == "SV2":
                if claim:
                    if "procedure_code" in service_line:
                        claim.service_lines.append(service_line)
                        service_line = {}
                    current_loop = "2400"
                    proc_info = segment.components(1, subelement_sep)
                    service_line["revenue_code"] = segment.get(0)
                    service_line["procedure_code"] = proc_info[1] if len(proc_info) > 1 else segment.get(1)
                    service_line["charge_amount"] = self._parse_amount(segment.get(2))
                    service_line["units"] = self._parse_units(segment.get(4))

            elif seg_id == "SE":
                done = finish()
                if done:
                    yield done

    def _parse_sv1(self, segment: EDISegment, subelement_sep: str) -> dict[str, Any]:
        parts = segment.components(0, subelement_sep)
        pointers = []
        for pointer in segment.components(6, subelement_sep):
            if pointer.isdigit():
                pointers.append(int(pointer))
        return {
            "procedure_code": parts[1] if len(parts) > 1 else segment.get(0),
            "modifiers": [m for m in parts[2:6] if m],
            "charge_amount": self._parse_amount(segment.get(1)),
            "units": self._parse_units(segment.get(3)),
            "place_of_service": segment.get(4),
            "diagnosis_pointers": pointers,
        }

    def _reset_member(self, pending: ClaimRecord) -> ClaimRecord:
        """Keep billing provider fields; clear subscriber/patient/payer."""
        fresh = ClaimRecord()
        for name in (
            "billing_npi",
            "billing_name",
            "billing_taxonomy",
            "billing_tax_id",
            "billing_address",
            "billing_city",
            "billing_state",
            "billing_zip",
        ):
            setattr(fresh, name, getattr(pending, name))
        return fresh

    def _parse_nm1(self, segment: EDISegment, entity_id: str, target: ClaimRecord) -> None:
        """Parse NM1 (Name) segment into the claim or pending record."""
        entity_type = segment.get(1)
        last_name = segment.get(2)
        first_name = segment.get(3)
        id_qual = segment.get(7)
        id_value = segment.get(8)
        name = f"{first_name} {last_name}".strip() if entity_type == "1" else last_name

        if entity_id == "85":
            target.billing_name = name
            if id_qual == "XX":
                target.billing_npi = id_value
        elif entity_id == "82":
            target.rendering_name = name
            if id_qual == "XX":
                target.rendering_npi = id_value
        elif entity_id == "77":
            target.facility_name = name
            if id_qual == "XX":
                target.facility_npi = id_value
        elif entity_id == "IL":
            target.subscriber_first_name = first_name
            target.subscriber_last_name = last_name
            if id_qual == "MI":
                target.subscriber_id = id_value
        elif entity_id == "QC":
            target.patient_first_name = first_name
            target.patient_last_name = last_name
            target.patient_id = id_value
        elif entity_id == "PR":
            target.payer_name = name
            target.payer_id = id_value

    @staticmethod
    def _format_icd10(code: str) -> str:
        """Re-insert the ICD-10 decimal point after the category."""
        code = code.strip().upper()
        if len(code) > 3 and "." not in code:
            return f"{code[:3]}.{code[3:]}"
        return code

    @staticmethod
    def _parse_amount(value: str) -> float:
        try:
            return float(value) if value else 0.0
        except ValueError:
            return 0.0

    @staticmethod
    def _parse_units(value: str) -> float:
        try:
            return float(value) if value else 1.0
        except ValueError:
            return 1.0

    def _parse_date(self, date_str: str) -> str:
        """Parse EDI date format (CCYYMMDD) to ISO format.

        Args:
            date_str: Date in CCYYMMDD format

        Returns:
            Date in YYYY-MM-DD format or original if parsing fails
        """
        if not date_str or len(date_str) < 8:
            return date_str

        try:
            dt = datetime.strptime(date_str[:8], "%Y%m%d")
            return dt.strftime("%Y-%m-%d")
        except ValueError:
            return date_str

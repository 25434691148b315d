"""EDI 835 Parser for electronic remittance advice.

Decodes ANSI X12 835 (005010X221A1) payment advice into a typed
``Remittance``.

Segment Reference:
- BPR: Financial information (payment amount, check date)
- TRN: Reassociation trace number (check/EFT number)
- DTM: Dates (405 production, 232/233 claim period, 472 service)
- N1: Payer (PR) and payee (PE) identification
- CLP: Claim payment information
- NM1: Patient (QC) / insured (IL) name
- CAS: Claim or service adjustment
- MOA/MIA: Claim-level remark codes
- SVC: Service payment information
- AMT: Service supplemental amount (B6 = allowed)
- LQ: Service remark codes
- PLB: Provider level adjustment
- SE/GE/IEA: Trailers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import Adjustment, ProviderAdjustment, Remittance, RemittanceClaim, RemittanceService
from .segments import EDISegment, SegmentStream, detect_delimiters, parse_amount, parse_edi_date

logger = logging.getLogger(__name__)

# Segments that are legal in an 835 but carry nothing the remittance needs
IGNORED_SEGMENTS = frozenset(
    {"ISA", "GS", "GE", "IEA", "REF", "N2", "N3", "N4", "PER", "LX", "TS2", "TS3", "RDM", "QTY", "CUR"}
)

MAX_CAS_TRIPLETS = 6
BALANCE_TOLERANCE = 0.01


class ParserState(str, Enum):
    """Position of the parser within the 835 loop structure."""

    HEADER = "header"
    CLAIM = "claim"
    SERVICE = "service"


@dataclass
class EDI835ParseResult:
    """Outcome of parsing one 835 document."""

    success: bool
    remittance: Remittance | None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    segment_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "remittance": self.remittance.to_dict() if self.remittance else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "segment_count": self.segment_count,
        }


def is_835_content(content: str) -> bool:
    """Check whether text looks like an 835 transaction set."""
    if not content or not content.strip():
        return False
    st = SegmentStream(content).find("ST")
    return st is not None and st.get(0) == "835"


class EDI835Parser:
    """Walks an 835 segment stream with an explicit state machine.

    A new parser instance is not required per document; all per-parse state
    lives in local variables of ``parse``.
    """

    def parse(self, content: str) -> EDI835ParseResult:
        """Parse 835 text into a remittance.

        Args:
            content: Raw EDI text

        Returns:
            Parse result; ``success`` is False for empty or non-835 input
        """
        if not content or not content.strip():
            return EDI835ParseResult(
                success=False, remittance=None, errors=["Empty EDI content provided"]
            )

        try:
            stream = SegmentStream(content, detect_delimiters(content))
            segment_count = stream.count()
            if segment_count == 0:
                return EDI835ParseResult(
                    success=False, remittance=None, errors=["No segments found in EDI content"]
                )

            st = stream.find("ST")
            if st is None or st.get(0) != "835":
                return EDI835ParseResult(
                    success=False,
                    remittance=None,
                    errors=["Not a valid 835 (Electronic Remittance Advice) transaction"],
                    segment_count=segment_count,
                )

            warnings: list[str] = []
            remittance = self._walk(stream, warnings)
            remittance.raw_content = content

            logger.info(
                f"Parsed 835 check {remittance.check_number or '<none>'}: "
                f"{remittance.claim_count} claims, {remittance.service_count} service lines, "
                f"{len(warnings)} warnings"
            )
            return EDI835ParseResult(
                success=True,
                remittance=remittance,
                warnings=warnings,
                segment_count=segment_count,
            )
        except Exception as e:
            logger.error(f"Failed to parse 835 content: {e}", exc_info=True)
            return EDI835ParseResult(
                success=False, remittance=None, errors=[f"Parse error: {e}"]
            )

    def _walk(self, stream: SegmentStream, warnings: list[str]) -> Remittance:
        """Run the HEADER -> CLAIM -> SERVICE state machine over all segments."""
        subelement_sep = stream.delimiters.subelement
        remittance = Remittance()
        state = ParserState.HEADER
        claim: RemittanceClaim | None = None
        service: RemittanceService | None = None
        allowed_reported = False
        line_number = 0
        production_date = None

        def close_service() -> None:
            nonlocal service
            if service is not None and claim is not None:
                self._finalize_service(service, allowed_reported, warnings)
                claim.services.append(service)
            service = None

        def close_claim() -> None:
            nonlocal claim
            close_service()
            if claim is not None:
                remittance.claims.append(claim)
            claim = None

        for position, segment in enumerate(stream, start=1):
            seg_id = segment.id

            if seg_id in IGNORED_SEGMENTS:
                continue

            if seg_id == "ST":
                state = ParserState.HEADER

            elif seg_id == "BPR":
                remittance.payment_amount = parse_amount(segment.get(1))
                remittance.payment_method = segment.get(3)
                check_date = parse_edi_date(segment.get(15))
                if check_date:
                    remittance.check_date = check_date

            elif seg_id == "TRN":
                remittance.check_number = segment.get(1)

            elif seg_id == "DTM":
                qualifier = segment.get(0)
                value = parse_edi_date(segment.get(1))
                if state == ParserState.SERVICE and service is not None:
                    if qualifier in ("472", "150") and value:
                        service.service_date = value
                elif state == ParserState.HEADER and qualifier == "405":
                    production_date = value

            elif seg_id == "N1":
                entity = segment.get(0)
                if entity == "PR":
                    remittance.payer_name = segment.get(1)
                    remittance.payer_id = segment.get(3) or None
                elif entity == "PE":
                    remittance.payee_name = segment.get(1)
                    remittance.payee_id = segment.get(3) or None

            elif seg_id == "CLP":
                close_claim()
                if not segment.get(0) and not segment.get(6):
                    warnings.append(
                        f"Segment {position} (CLP): claim payment has no patient account "
                        "or payer claim number"
                    )
                claim = RemittanceClaim(
                    patient_account_number=segment.get(0) or None,
                    status_code=segment.get(1),
                    charged_amount=parse_amount(segment.get(2)),
                    paid_amount=parse_amount(segment.get(3)),
                    patient_responsibility=parse_amount(segment.get(4)),
                    payer_claim_number=segment.get(6) or None,
                )
                state = ParserState.CLAIM

            elif seg_id == "NM1":
                if claim is None:
                    continue
                entity = segment.get(0)
                if entity in ("QC", "IL"):
                    last_name = segment.get(2)
                    first_name = segment.get(3)
                    name = f"{last_name}, {first_name}" if first_name else last_name
                    # Patient (QC) wins over insured (IL)
                    if entity == "QC" or not claim.patient_name:
                        claim.patient_name = name.strip()
                        claim.patient_identifier = segment.get(8) or claim.patient_identifier

            elif seg_id == "CAS":
                adjustments = self._parse_adjustments(segment, position, warnings)
                if state == ParserState.SERVICE and service is not None:
                    for adjustment in adjustments:
                        service.add_adjustment(adjustment)
                elif claim is not None:
                    claim.adjustments.extend(adjustments)
                else:
                    warnings.append(f"Segment {position} (CAS): adjustment outside of a claim payment")

            elif seg_id == "MOA":
                if claim is not None:
                    claim.remark_codes.extend(code for code in segment.elements[2:7] if code)

            elif seg_id == "MIA":
                if claim is not None:
                    indices = (4, 19, 20, 21, 22)
                    claim.remark_codes.extend(segment.get(i) for i in indices if segment.get(i))

            elif seg_id == "SVC":
                if claim is None:
                    warnings.append(f"Segment {position} (SVC): service line outside of a claim payment")
                    continue
                close_service()
                line_number += 1
                service = self._parse_service(segment, subelement_sep, line_number, position, warnings)
                allowed_reported = False
                state = ParserState.SERVICE

            elif seg_id == "AMT":
                if state == ParserState.SERVICE and service is not None and segment.get(0) == "B6":
                    service.allowed_amount = parse_amount(segment.get(1))
                    allowed_reported = True

            elif seg_id == "LQ":
                if segment.get(0) in ("HE", "RX") and segment.get(1):
                    if state == ParserState.SERVICE and service is not None:
                        service.remark_codes.append(segment.get(1))
                    elif claim is not None:
                        claim.remark_codes.append(segment.get(1))

            elif seg_id == "PLB":
                close_claim()
                state = ParserState.HEADER
                remittance.provider_adjustments.extend(
                    self._parse_provider_adjustments(segment, subelement_sep)
                )

            elif seg_id == "SE":
                close_claim()
                state = ParserState.HEADER

            else:
                warnings.append(f"Segment {position} ({seg_id}): unrecognized segment skipped")

        close_claim()

        if remittance.check_date is None:
            remittance.check_date = production_date
        if not remittance.check_number:
            warnings.append("Remittance has no check/EFT trace number (TRN02)")
        if not remittance.claims:
            warnings.append("Remittance contains no claim payments")

        remittance.recompute_totals()
        self._check_payment_total(remittance, warnings)
        return remittance

    def _parse_service(
        self,
        segment: EDISegment,
        subelement_sep: str,
        line_number: int,
        position: int,
        warnings: list[str],
    ) -> RemittanceService:
        """Build a service record from an SVC segment."""
        procedure = segment.components(0, subelement_sep)
        cpt_code = procedure[1] if len(procedure) > 1 else ""
        if not cpt_code:
            warnings.append(f"Segment {position} (SVC): missing procedure code")

        units_value = segment.get(4)
        try:
            units = int(float(units_value)) if units_value else 1
        except ValueError:
            warnings.append(f"Segment {position} (SVC): invalid unit count {units_value!r}")
            units = 1

        return RemittanceService(
            line_number=line_number,
            cpt_code=cpt_code,
            modifiers=[m for m in procedure[2:6] if m],
            charged_amount=parse_amount(segment.get(1)),
            paid_amount=parse_amount(segment.get(2)),
            units=units or 1,
        )

    def _parse_adjustments(
        self, segment: EDISegment, position: int, warnings: list[str]
    ) -> list[Adjustment]:
        """Parse up to six reason/amount/quantity triplets sharing one group code."""
        group_code = segment.get(0)
        if not group_code:
            warnings.append(f"Segment {position} (CAS): missing group code")
            return []

        adjustments: list[Adjustment] = []
        for i in range(MAX_CAS_TRIPLETS):
            base = 1 + i * 3
            reason_code = segment.get(base)
            amount = parse_amount(segment.get(base + 1))
            if not reason_code or amount == 0:
                continue
            quantity_value = segment.get(base + 2)
            adjustments.append(
                Adjustment(
                    group_code=group_code,
                    reason_code=reason_code,
                    amount=amount,
                    quantity=parse_amount(quantity_value) if quantity_value else None,
                )
            )
        return adjustments

    def _parse_provider_adjustments(
        self, segment: EDISegment, subelement_sep: str
    ) -> list[ProviderAdjustment]:
        provider_id = segment.get(0)
        fiscal_date = parse_edi_date(segment.get(1))
        results: list[ProviderAdjustment] = []
        for index in range(2, len(segment.elements), 2):
            identifier = segment.components(index, subelement_sep)
            if not identifier:
                continue
            results.append(
                ProviderAdjustment(
                    provider_id=provider_id,
                    fiscal_period_date=fiscal_date,
                    reason_code=identifier[0],
                    reference=identifier[1] if len(identifier) > 1 else "",
                    amount=parse_amount(segment.get(index + 1)),
                )
            )
        return results

    def _finalize_service(
        self, service: RemittanceService, allowed_reported: bool, warnings: list[str]
    ) -> None:
        """Default the allowed amount and check the line balances."""
        if not allowed_reported and service.charged_amount > 0:
            service.allowed_amount = round(service.charged_amount - service.adjusted_amount, 2)

        calculated = service.paid_amount + service.adjusted_amount + service.patient_amount
        if abs(service.charged_amount - calculated) > BALANCE_TOLERANCE:
            warnings.append(
                f"Service {service.cpt_code}: amounts don't balance. "
                f"Charged: {service.charged_amount:.2f}, Calculated: {calculated:.2f}"
            )

    def _check_payment_total(self, remittance: Remittance, warnings: list[str]) -> None:
        """Compare BPR02 with the paid total net of provider adjustments."""
        if not remittance.claims:
            return
        plb_total = sum(plb.amount for plb in remittance.provider_adjustments)
        claim_paid = sum(claim.paid_amount for claim in remittance.claims)
        expected = round(claim_paid - plb_total, 2)
        if abs(remittance.payment_amount - expected) > BALANCE_TOLERANCE:
            warnings.append(
                f"BPR payment amount {remittance.payment_amount:.2f} does not equal "
                f"claim payments less provider adjustments ({expected:.2f})"
            )


def parse_835(content: str) -> EDI835ParseResult:
    """Parse an 835 document."""
    return EDI835Parser().parse(content)

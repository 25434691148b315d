"""Greedy remittance line matcher.

Strategies run in a fixed order and the first one that finds a claim wins;
a weaker strategy is never consulted after a stronger one succeeds.

1. Patient account number as the organization's claim number, refined by
   CPT + service date against the claim's lines (high), or by a CPT +
   patient charge search (medium).
2. Payer claim control number previously stored on a claim (medium).
3. Nothing found (none).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

import config
from billing.models import Charge, Claim, ClaimLine, RecordNotFoundError
from billing.store import BillingStore
from edi.models import RemittanceClaim, RemittanceService

from .models import MatchConfidence, MatchResult

logger = logging.getLogger(__name__)


class ClaimLookup(Protocol):
    """Read-only claim and charge lookups the matcher depends on."""

    def find_claim_by_number(self, organization_id: str, claim_number: str) -> Claim | None: ...

    def find_claim_by_payer_claim_number(
        self, organization_id: str, payer_claim_number: str
    ) -> Claim | None: ...

    def find_charge_by_cpt_and_patient(
        self,
        organization_id: str,
        cpt_code: str,
        patient_id: str,
        service_date: date | None,
        tolerance_days: int = 1,
    ) -> Charge | None: ...


def _line_matches(line: ClaimLine, service: RemittanceService) -> bool:
    if line.cpt_code != service.cpt_code:
        return False
    if service.service_date is None:
        return True
    return line.service_date_from == service.service_date


class RemittanceMatcher:
    """Resolve remittance service lines to stored claims and charges."""

    def __init__(self, lookup: ClaimLookup, date_tolerance_days: int | None = None) -> None:
        self.lookup = lookup
        self.date_tolerance_days = (
            config.MATCH_DATE_TOLERANCE_DAYS if date_tolerance_days is None else date_tolerance_days
        )

    def match(
        self, organization_id: str, service: RemittanceService, claim: RemittanceClaim
    ) -> MatchResult:
        """Return the single best match for ``service`` within ``claim``.

        Args:
            organization_id: Organization whose claims are searched
            service: Remitted service line
            claim: Enclosing claim payment (account and payer claim numbers)

        Returns:
            MatchResult; confidence ``none`` when no strategy succeeds
        """
        if claim.patient_account_number:
            found = self.lookup.find_claim_by_number(organization_id, claim.patient_account_number)
            if found is not None:
                return self._refine(organization_id, found, service)

        if claim.payer_claim_number:
            found = self.lookup.find_claim_by_payer_claim_number(
                organization_id, claim.payer_claim_number
            )
            if found is not None:
                return MatchResult(
                    confidence=MatchConfidence.MEDIUM,
                    reason="matched by payer claim number",
                    matched_claim_id=found.id,
                )

        return MatchResult.no_match()

    def _refine(self, organization_id: str, claim: Claim, service: RemittanceService) -> MatchResult:
        line = next((ln for ln in claim.lines if _line_matches(ln, service)), None)
        if line is not None:
            charge_id = line.charge_id or self._search_charge(organization_id, claim, service)
            return MatchResult(
                confidence=MatchConfidence.HIGH,
                reason="matched by claim number and service line",
                matched_claim_id=claim.id,
                matched_charge_id=charge_id,
            )

        charge_id = self._search_charge(organization_id, claim, service)
        if charge_id is not None:
            return MatchResult(
                confidence=MatchConfidence.MEDIUM,
                reason="matched by CPT and patient",
                matched_claim_id=claim.id,
                matched_charge_id=charge_id,
            )

        return MatchResult(
            confidence=MatchConfidence.MEDIUM,
            reason="matched by claim number",
            matched_claim_id=claim.id,
        )

    def _search_charge(
        self, organization_id: str, claim: Claim, service: RemittanceService
    ) -> str | None:
        if not service.cpt_code:
            return None
        charge = self.lookup.find_charge_by_cpt_and_patient(
            organization_id,
            service.cpt_code,
            claim.patient_id,
            service.service_date,
            self.date_tolerance_days,
        )
        return charge.id if charge else None


@dataclass
class MatchSummary:
    """Outcome of matching every unposted line of one remittance."""

    remittance_id: str
    results: list[dict] = field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return sum(1 for r in self.results if r["confidence"] != MatchConfidence.NONE.value)

    @property
    def review_count(self) -> int:
        return sum(1 for r in self.results if MatchConfidence(r["confidence"]).needs_review)

    def to_dict(self) -> dict:
        return {
            "remittance_id": self.remittance_id,
            "total": len(self.results),
            "matched": self.matched_count,
            "needs_review": self.review_count,
            "results": self.results,
        }


def match_remittance(
    store: BillingStore, matcher: RemittanceMatcher, organization_id: str, remittance_id: str
) -> MatchSummary:
    """Match every unposted line item of a stored remittance and save the outcomes.

    Args:
        store: BillingStore holding the remittance
        matcher: Matcher configured with a lookup over the same store
        organization_id: Owning organization
        remittance_id: Remittance to reconcile

    Returns:
        MatchSummary with one entry per line item

    Raises:
        RecordNotFoundError: If the remittance does not exist
    """
    if store.get_remittance(organization_id, remittance_id) is None:
        raise RecordNotFoundError(f"Remittance not found: {remittance_id}")

    summary = MatchSummary(remittance_id=remittance_id)
    for item in store.list_line_items(organization_id, remittance_id, unposted_only=True):
        result = matcher.match(organization_id, item.to_service(), item.claim_context())
        store.record_match(
            organization_id,
            item.id,
            result.matched_claim_id,
            result.matched_charge_id,
            result.confidence.value,
            result.reason,
        )
        summary.results.append({"line_item_id": item.id, **result.to_dict()})

    logger.info(
        f"Matched remittance {remittance_id}: {summary.matched_count}/{len(summary.results)} lines, "
        f"{summary.review_count} need review"
    )
    return summary

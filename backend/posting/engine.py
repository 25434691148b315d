"""Apply remittance line items to the charge ledger.

The whole batch runs in one ``BEGIN IMMEDIATE`` transaction. Each line item
gets its own savepoint, so a failing item is rolled back and reported while
the others still commit. Items are flagged posted with a conditional update
inside the same transaction, so concurrent or retried calls post each line
at most once.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any

from billing.models import (
    ChargeStatus,
    Payment,
    PaymentAllocation,
    RecordNotFoundError,
    RemittanceLineItem,
)
from billing.store import BillingStore
from edi.reason_codes import CONTRACTUAL_GROUP, split_adjustment_code

from .models import LinePostingResult, LinePostingStatus, PostingOptions, PostingResult

logger = logging.getLogger(__name__)


class AlreadyPostedError(Exception):
    """Raised when a line item was posted by another writer mid-batch."""


def _is_contractual(item: RemittanceLineItem) -> bool:
    return any(
        split_adjustment_code(code)[0] == CONTRACTUAL_GROUP for code in item.adjustment_reason_codes
    )


class PostingEngine:
    """Posts matched remittance lines as payments, allocations and adjustments."""

    def __init__(self, store: BillingStore) -> None:
        self.store = store

    def post_remittance(
        self,
        organization_id: str,
        remittance_id: str,
        line_item_ids: Iterable[str] | None = None,
        options: PostingOptions | None = None,
        posted_by: str = "system",
    ) -> PostingResult:
        """Post the unposted line items of a remittance.

        Args:
            organization_id: Owning organization
            remittance_id: Remittance to post
            line_item_ids: Subset of line items; all unposted items when None
            options: Adjustment and patient-responsibility policies
            posted_by: Actor recorded on each posted line

        Returns:
            PostingResult with one entry per line item in the working set

        Raises:
            RecordNotFoundError: If the remittance does not exist
        """
        options = options or PostingOptions()
        header = self.store.get_remittance(organization_id, remittance_id)
        if header is None:
            raise RecordNotFoundError(f"Remittance not found: {remittance_id}")

        result = PostingResult(remittance_id=remittance_id)
        posted_at = datetime.now(timezone.utc).isoformat()

        conn = self.store.open(autocommit=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                items = self.store.list_line_items(
                    organization_id,
                    remittance_id,
                    unposted_only=True,
                    line_item_ids=line_item_ids,
                    conn=conn,
                )
                for item in items:
                    result.add(
                        self._post_in_savepoint(
                            conn, organization_id, header, item, options, posted_by, posted_at
                        )
                    )

                if result.error_count == 0 and result.posted_count > 0:
                    self.store.mark_remittance_processed(conn, organization_id, remittance_id)
                    result.is_processed = True
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

        logger.info(
            f"Posted remittance {remittance_id}: {result.posted_count} posted, "
            f"{result.skipped_count} skipped, {result.error_count} errors, "
            f"payments {result.total_payments:.2f}"
        )
        return result

    def _post_in_savepoint(
        self,
        conn: sqlite3.Connection,
        organization_id: str,
        header: dict[str, Any],
        item: RemittanceLineItem,
        options: PostingOptions,
        posted_by: str,
        posted_at: str,
    ) -> LinePostingResult:
        conn.execute("SAVEPOINT line_item")
        try:
            outcome = self._post_item(
                conn, organization_id, header, item, options, posted_by, posted_at
            )
        except AlreadyPostedError:
            conn.execute("ROLLBACK TO SAVEPOINT line_item")
            outcome = LinePostingResult(
                line_item_id=item.id, status=LinePostingStatus.SKIPPED, message="already posted"
            )
        except Exception as e:
            conn.execute("ROLLBACK TO SAVEPOINT line_item")
            logger.error(f"Failed to post line item {item.id}: {e}", exc_info=True)
            outcome = LinePostingResult(
                line_item_id=item.id, status=LinePostingStatus.ERROR, message=str(e)
            )
        conn.execute("RELEASE SAVEPOINT line_item")
        return outcome

    def _post_item(
        self,
        conn: sqlite3.Connection,
        organization_id: str,
        header: dict[str, Any],
        item: RemittanceLineItem,
        options: PostingOptions,
        posted_by: str,
        posted_at: str,
    ) -> LinePostingResult:
        if not item.matched_charge_id:
            return LinePostingResult(
                line_item_id=item.id, status=LinePostingStatus.SKIPPED, message="no matched charge"
            )

        charge = self.store.get_charge(organization_id, item.matched_charge_id, conn=conn)
        if charge is None:
            return LinePostingResult(
                line_item_id=item.id,
                status=LinePostingStatus.ERROR,
                message=f"Charge not found: {item.matched_charge_id}",
                charge_id=item.matched_charge_id,
            )

        payment_id = None
        if item.paid_amount > 0:
            payment = self.store.insert_payment(
                conn,
                Payment(
                    organization_id=organization_id,
                    amount=item.paid_amount,
                    method="insurance",
                    claim_id=item.matched_claim_id,
                    remittance_id=item.remittance_id,
                    line_item_id=item.id,
                    reference=header.get("check_number"),
                    payment_date=date.fromisoformat(header["check_date"])
                    if header.get("check_date")
                    else None,
                ),
            )
            payment_id = payment.id
            self.store.insert_allocation(
                conn,
                PaymentAllocation(payment_id=payment.id, charge_id=charge.id, amount=item.paid_amount),
            )

        adjusted = 0.0
        contractual = 0.0
        if options.post_adjustments and item.adjusted_amount > 0:
            adjusted = item.adjusted_amount
            if _is_contractual(item):
                contractual = item.adjusted_amount

        patient = item.patient_amount if options.create_patient_responsibility else 0.0

        charge.payments = round(charge.payments + item.paid_amount, 2)
        charge.adjustments = round(charge.adjustments + adjusted, 2)
        charge.balance = max(
            0.0, round(charge.gross_amount - charge.payments - charge.adjustments + patient, 2)
        )
        if charge.balance <= 0:
            charge.status = ChargeStatus.PAID
        elif item.paid_amount > 0:
            charge.status = ChargeStatus.BILLED
        self.store.update_charge_ledger(conn, charge)

        if not self.store.mark_line_item_posted(conn, organization_id, item.id, posted_by, posted_at):
            raise AlreadyPostedError(item.id)

        return LinePostingResult(
            line_item_id=item.id,
            status=LinePostingStatus.POSTED,
            charge_id=charge.id,
            payment_id=payment_id,
            paid_amount=item.paid_amount,
            adjusted_amount=adjusted,
            contractual_amount=contractual,
            patient_amount=patient,
            new_balance=charge.balance,
        )

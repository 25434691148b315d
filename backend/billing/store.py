"""SQLite persistence for claims, charges, remittances and the payment ledger.

Every read and write is scoped by an explicit ``organization_id``.

Usage:
    store = BillingStore(db_path)
    claim = store.add_claim(Claim(...))
    remittance = store.save_remittance(org_id, parsed_remittance)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any

from edi.models import (
    Adjustment,
    ProviderAdjustment,
    Remittance,
    RemittanceClaim,
    RemittanceService,
)
from edi.segments import parse_edi_date

from .models import (
    Charge,
    ChargeStatus,
    Claim,
    ClaimLine,
    ClaimStatus,
    FeeScheduleItem,
    InvalidTransitionError,
    Payment,
    PaymentAllocation,
    RecordNotFoundError,
    RemittanceLineItem,
)

logger = logging.getLogger(__name__)

# Minimum number of paid allocations before a historical average is trusted
HISTORY_MIN_POINTS = 5
HISTORY_LOOKBACK_DAYS = 180


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return parse_edi_date(value)


def _adjustments(value: str | None) -> list[Adjustment]:
    return [
        Adjustment(
            group_code=adj["group_code"],
            reason_code=adj["reason_code"],
            amount=adj["amount"],
            quantity=adj.get("quantity"),
        )
        for adj in json.loads(value or "[]")
    ]


def _provider_adjustments(value: str | None) -> list[ProviderAdjustment]:
    return [
        ProviderAdjustment(
            provider_id=plb["provider_id"],
            fiscal_period_date=_date(plb["fiscal_period_date"]),
            reason_code=plb["reason_code"],
            reference=plb["reference"],
            amount=plb["amount"],
        )
        for plb in json.loads(value or "[]")
    ]


class BillingStore:
    """Storage for the claim lifecycle and remittance ledger.

    Attributes:
        db_path: Path to the SQLite database
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the billing store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._init_tables()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that commits on success and always closes.

        Yields:
            SQLite connection with ``sqlite3.Row`` rows and foreign keys on
        """
        conn = self.open()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def open(self, autocommit: bool = False) -> sqlite3.Connection:
        """Open a raw connection; ``autocommit`` leaves transactions to the caller."""
        conn = sqlite3.connect(self.db_path, isolation_level=None if autocommit else "")
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_tables(self) -> None:
        """Initialize database tables if they don't exist."""
        with self.connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    claim_number TEXT NOT NULL,
                    patient_id TEXT NOT NULL,
                    payer_id TEXT,
                    payer_name TEXT,
                    rendering_provider_id TEXT,
                    claim_type TEXT DEFAULT 'professional',
                    status TEXT DEFAULT 'draft',
                    total_charge REAL NOT NULL,
                    diagnosis_codes TEXT,
                    payer_claim_number TEXT,
                    control_number TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    submitted_at TEXT,
                    UNIQUE (organization_id, claim_number)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS charges (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    patient_id TEXT NOT NULL,
                    claim_id TEXT,
                    cpt_code TEXT NOT NULL,
                    service_date TEXT,
                    fee REAL NOT NULL,
                    units REAL DEFAULT 1,
                    payments REAL DEFAULT 0,
                    adjustments REAL DEFAULT 0,
                    balance REAL DEFAULT 0,
                    status TEXT DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (claim_id) REFERENCES claims(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS claim_lines (
                    id TEXT PRIMARY KEY,
                    claim_id TEXT NOT NULL,
                    line_number INTEGER NOT NULL,
                    cpt_code TEXT NOT NULL,
                    modifiers TEXT,
                    units REAL DEFAULT 1,
                    charge_amount REAL NOT NULL,
                    service_date_from TEXT,
                    service_date_to TEXT,
                    diagnosis_pointers TEXT,
                    place_of_service TEXT,
                    charge_id TEXT,
                    FOREIGN KEY (claim_id) REFERENCES claims(id),
                    FOREIGN KEY (charge_id) REFERENCES charges(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS fee_schedule_items (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    payer_id TEXT,
                    cpt_code TEXT NOT NULL,
                    allowed_amount REAL NOT NULL,
                    effective_date TEXT NOT NULL,
                    end_date TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS remittances (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    check_number TEXT,
                    check_date TEXT,
                    payer_name TEXT,
                    payer_id TEXT,
                    payee_name TEXT,
                    payee_id TEXT,
                    payment_method TEXT,
                    payment_amount REAL DEFAULT 0,
                    total_paid REAL DEFAULT 0,
                    total_adjusted REAL DEFAULT 0,
                    total_charges REAL DEFAULT 0,
                    claim_count INTEGER DEFAULT 0,
                    provider_adjustments TEXT,
                    raw_content TEXT,
                    is_processed INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (organization_id, check_number)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS remittance_claims (
                    id TEXT PRIMARY KEY,
                    remittance_id TEXT NOT NULL,
                    organization_id TEXT NOT NULL,
                    claim_index INTEGER NOT NULL,
                    patient_name TEXT,
                    patient_account_number TEXT,
                    payer_claim_number TEXT,
                    patient_identifier TEXT,
                    status_code TEXT,
                    charged_amount REAL DEFAULT 0,
                    paid_amount REAL DEFAULT 0,
                    patient_responsibility REAL DEFAULT 0,
                    adjustments TEXT,
                    remark_codes TEXT,
                    FOREIGN KEY (remittance_id) REFERENCES remittances(id),
                    UNIQUE (remittance_id, claim_index)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS remittance_line_items (
                    id TEXT PRIMARY KEY,
                    remittance_id TEXT NOT NULL,
                    organization_id TEXT NOT NULL,
                    line_number INTEGER NOT NULL,
                    claim_index INTEGER DEFAULT 0,
                    patient_name TEXT,
                    patient_account_number TEXT,
                    payer_claim_number TEXT,
                    claim_status_code TEXT,
                    cpt_code TEXT,
                    modifiers TEXT,
                    units INTEGER DEFAULT 1,
                    service_date TEXT,
                    charged_amount REAL DEFAULT 0,
                    allowed_amount REAL DEFAULT 0,
                    paid_amount REAL DEFAULT 0,
                    adjusted_amount REAL DEFAULT 0,
                    patient_amount REAL DEFAULT 0,
                    adjustments TEXT,
                    remark_codes TEXT,
                    is_posted INTEGER DEFAULT 0,
                    posted_at TEXT,
                    posted_by TEXT,
                    matched_claim_id TEXT,
                    matched_charge_id TEXT,
                    match_confidence TEXT,
                    match_reason TEXT,
                    FOREIGN KEY (remittance_id) REFERENCES remittances(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS payments (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    claim_id TEXT,
                    remittance_id TEXT,
                    line_item_id TEXT,
                    amount REAL NOT NULL,
                    method TEXT DEFAULT 'insurance',
                    reference TEXT,
                    payment_date TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS payment_allocations (
                    id TEXT PRIMARY KEY,
                    payment_id TEXT NOT NULL,
                    charge_id TEXT NOT NULL,
                    amount REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (payment_id) REFERENCES payments(id),
                    FOREIGN KEY (charge_id) REFERENCES charges(id)
                )
            """)

            # Indices for performance
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_claims_payer_claim_number
                ON claims(organization_id, payer_claim_number)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_charges_patient_cpt
                ON charges(organization_id, patient_id, cpt_code, service_date)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_claim_lines_claim
                ON claim_lines(claim_id, line_number)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_fee_schedule_cpt
                ON fee_schedule_items(organization_id, cpt_code, effective_date DESC)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_line_items_remittance
                ON remittance_line_items(remittance_id, line_number)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_allocations_charge
                ON payment_allocations(charge_id)
            """)

            logger.info("Billing tables initialized")

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def add_claim(self, claim: Claim, create_charges: bool = True) -> Claim:
        """Persist a claim with its lines.

        Args:
            claim: Claim to store; ids are assigned here
            create_charges: Create a pending charge for every line that has
                no ``charge_id`` yet

        Returns:
            The stored claim

        Raises:
            ValueError: If the total charge does not equal the sum of lines
        """
        line_total = round(sum(line.charge_amount for line in claim.lines), 2)
        if round(claim.total_charge, 2) != line_total:
            raise ValueError(
                f"Claim total {claim.total_charge:.2f} does not equal line total {line_total:.2f}"
            )

        now = _now()
        claim.id = claim.id or _new_id()
        claim.created_at = claim.created_at or now

        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO claims
                (id, organization_id, claim_number, patient_id, payer_id, payer_name,
                 rendering_provider_id, claim_type, status, total_charge, diagnosis_codes,
                 payer_claim_number, control_number, created_at, updated_at, submitted_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claim.id,
                    claim.organization_id,
                    claim.claim_number,
                    claim.patient_id,
                    claim.payer_id,
                    claim.payer_name,
                    claim.rendering_provider_id,
                    claim.claim_type,
                    claim.status.value,
                    claim.total_charge,
                    json.dumps(claim.diagnosis_codes),
                    claim.payer_claim_number,
                    claim.control_number,
                    claim.created_at,
                    now,
                    claim.submitted_at,
                ),
            )

            for line in claim.lines:
                line.id = line.id or _new_id()
                if create_charges and not line.charge_id:
                    units = line.units or 1
                    charge = Charge(
                        organization_id=claim.organization_id,
                        patient_id=claim.patient_id,
                        claim_id=claim.id,
                        cpt_code=line.cpt_code,
                        service_date=line.service_date_from,
                        fee=round(line.charge_amount / units, 2),
                        units=units,
                    )
                    self._insert_charge(conn, charge)
                    line.charge_id = charge.id
                conn.execute(
                    """
                    INSERT INTO claim_lines
                    (id, claim_id, line_number, cpt_code, modifiers, units, charge_amount,
                     service_date_from, service_date_to, diagnosis_pointers,
                     place_of_service, charge_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        line.id,
                        claim.id,
                        line.line_number,
                        line.cpt_code,
                        json.dumps(line.modifiers),
                        line.units,
                        line.charge_amount,
                        _iso(line.service_date_from),
                        _iso(line.service_date_to),
                        json.dumps(line.diagnosis_pointers),
                        line.place_of_service,
                        line.charge_id,
                    ),
                )

        logger.info(f"Created claim {claim.claim_number} ({claim.id}) with {len(claim.lines)} lines")
        return claim

    def get_claim(self, organization_id: str, claim_id: str) -> Claim | None:
        """Get a claim by id, or None if it does not belong to the organization."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM claims WHERE id = ? AND organization_id = ?",
                (claim_id, organization_id),
            ).fetchone()
            return self._row_to_claim(conn, row) if row else None

    def find_claim_by_number(self, organization_id: str, claim_number: str) -> Claim | None:
        """Look up a claim by the provider-assigned claim number."""
        if not claim_number:
            return None
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM claims WHERE organization_id = ? AND claim_number = ?",
                (organization_id, claim_number),
            ).fetchone()
            return self._row_to_claim(conn, row) if row else None

    def find_claim_by_payer_claim_number(
        self, organization_id: str, payer_claim_number: str
    ) -> Claim | None:
        """Look up a claim by the payer's internal claim control number."""
        if not payer_claim_number:
            return None
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM claims
                WHERE organization_id = ? AND payer_claim_number = ?
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (organization_id, payer_claim_number),
            ).fetchone()
            return self._row_to_claim(conn, row) if row else None

    def list_claims(
        self,
        organization_id: str,
        status: ClaimStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Claim]:
        """List claims, newest first, optionally filtered by status."""
        query = "SELECT * FROM claims WHERE organization_id = ?"
        params: list[Any] = [organization_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_claim(conn, row) for row in rows]

    def update_claim_status(
        self,
        organization_id: str,
        claim_id: str,
        status: ClaimStatus,
        control_number: str | None = None,
        payer_claim_number: str | None = None,
    ) -> Claim:
        """Move a claim to a new lifecycle status.

        Args:
            organization_id: Owning organization
            claim_id: Claim to update
            status: Target status
            control_number: Interchange control number, recorded on submission
            payer_claim_number: Payer claim control number, when known

        Returns:
            The updated claim

        Raises:
            RecordNotFoundError: If the claim does not exist
            InvalidTransitionError: If the lifecycle forbids the change
        """
        claim = self.get_claim(organization_id, claim_id)
        if claim is None:
            raise RecordNotFoundError(f"Claim not found: {claim_id}")
        if not claim.status.can_transition_to(status):
            raise InvalidTransitionError(
                f"Cannot move claim {claim.claim_number} from {claim.status.value} to {status.value}"
            )

        now = _now()
        submitted_at = now if status == ClaimStatus.SUBMITTED else claim.submitted_at
        with self.connection() as conn:
            conn.execute(
                """
                UPDATE claims
                SET status = ?, submitted_at = ?, updated_at = ?,
                    control_number = COALESCE(?, control_number),
                    payer_claim_number = COALESCE(?, payer_claim_number)
                WHERE id = ? AND organization_id = ?
                """,
                (
                    status.value,
                    submitted_at,
                    now,
                    control_number,
                    payer_claim_number,
                    claim_id,
                    organization_id,
                ),
            )
            if status == ClaimStatus.SUBMITTED:
                conn.execute(
                    """
                    UPDATE charges SET status = ?, updated_at = ?
                    WHERE claim_id = ? AND organization_id = ? AND status = ?
                    """,
                    (
                        ChargeStatus.BILLED.value,
                        now,
                        claim_id,
                        organization_id,
                        ChargeStatus.PENDING.value,
                    ),
                )

        logger.info(f"Claim {claim.claim_number}: {claim.status.value} -> {status.value}")
        updated = self.get_claim(organization_id, claim_id)
        if updated is None:
            raise RecordNotFoundError(f"Claim not found: {claim_id}")
        return updated

    def _row_to_claim(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Claim:
        """Convert a claims row (plus its lines) to a Claim object."""
        line_rows = conn.execute(
            "SELECT * FROM claim_lines WHERE claim_id = ? ORDER BY line_number",
            (row["id"],),
        ).fetchall()
        lines = [
            ClaimLine(
                id=line["id"],
                line_number=line["line_number"],
                cpt_code=line["cpt_code"],
                charge_amount=line["charge_amount"],
                units=line["units"],
                modifiers=json.loads(line["modifiers"] or "[]"),
                service_date_from=_date(line["service_date_from"]),
                service_date_to=_date(line["service_date_to"]),
                diagnosis_pointers=json.loads(line["diagnosis_pointers"] or "[]"),
                place_of_service=line["place_of_service"],
                charge_id=line["charge_id"],
            )
            for line in line_rows
        ]
        return Claim(
            id=row["id"],
            organization_id=row["organization_id"],
            claim_number=row["claim_number"],
            patient_id=row["patient_id"],
            payer_id=row["payer_id"],
            payer_name=row["payer_name"],
            rendering_provider_id=row["rendering_provider_id"],
            claim_type=row["claim_type"],
            status=ClaimStatus(row["status"]),
            total_charge=row["total_charge"],
            diagnosis_codes=json.loads(row["diagnosis_codes"] or "[]"),
            payer_claim_number=row["payer_claim_number"],
            control_number=row["control_number"],
            created_at=row["created_at"],
            submitted_at=row["submitted_at"],
            lines=lines,
        )

    # ------------------------------------------------------------------
    # Charges and fee schedule
    # ------------------------------------------------------------------

    def add_charge(self, charge: Charge) -> Charge:
        """Persist a standalone charge."""
        with self.connection() as conn:
            self._insert_charge(conn, charge)
        logger.info(f"Created charge {charge.id} for {charge.cpt_code}")
        return charge

    def _insert_charge(self, conn: sqlite3.Connection, charge: Charge) -> None:
        now = _now()
        charge.id = charge.id or _new_id()
        conn.execute(
            """
            INSERT INTO charges
            (id, organization_id, patient_id, claim_id, cpt_code, service_date, fee, units,
             payments, adjustments, balance, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                charge.id,
                charge.organization_id,
                charge.patient_id,
                charge.claim_id,
                charge.cpt_code,
                _iso(charge.service_date),
                charge.fee,
                charge.units,
                charge.payments,
                charge.adjustments,
                charge.balance,
                charge.status.value,
                now,
                now,
            ),
        )

    def get_charge(
        self, organization_id: str, charge_id: str, conn: sqlite3.Connection | None = None
    ) -> Charge | None:
        """Get a charge by id; pass ``conn`` to read inside an open transaction."""
        query = "SELECT * FROM charges WHERE id = ? AND organization_id = ?"
        if conn is not None:
            row = conn.execute(query, (charge_id, organization_id)).fetchone()
            return self._row_to_charge(row) if row else None
        with self.connection() as own:
            row = own.execute(query, (charge_id, organization_id)).fetchone()
            return self._row_to_charge(row) if row else None

    def find_charge_by_cpt_and_patient(
        self,
        organization_id: str,
        cpt_code: str,
        patient_id: str,
        service_date: date | None,
        tolerance_days: int = 1,
    ) -> Charge | None:
        """Find a non-void charge for the patient and CPT near a service date.

        Args:
            organization_id: Owning organization
            cpt_code: Procedure code
            patient_id: Patient the charge belongs to
            service_date: Remitted date of service; any date when None
            tolerance_days: Days either side of ``service_date`` to accept

        Returns:
            The charge closest to the service date, or None
        """
        query = """
            SELECT * FROM charges
            WHERE organization_id = ? AND patient_id = ? AND cpt_code = ? AND status != ?
        """
        params: list[Any] = [organization_id, patient_id, cpt_code, ChargeStatus.VOID.value]
        if service_date is not None:
            query += " AND service_date BETWEEN ? AND ?"
            params.extend(
                [
                    (service_date - timedelta(days=tolerance_days)).isoformat(),
                    (service_date + timedelta(days=tolerance_days)).isoformat(),
                ]
            )

        with self.connection() as conn:
            rows = conn.execute(query + " ORDER BY created_at", params).fetchall()

        charges = [self._row_to_charge(row) for row in rows]
        if not charges:
            return None
        if service_date is None:
            return charges[0]
        return min(
            charges,
            key=lambda c: abs((c.service_date - service_date).days) if c.service_date else 0,
        )

    def list_charges(
        self,
        organization_id: str,
        claim_id: str | None = None,
        paid_only: bool = False,
        since: date | None = None,
        limit: int = 500,
    ) -> list[Charge]:
        """List charges, optionally limited to a claim, paid charges or a start date."""
        query = "SELECT * FROM charges WHERE organization_id = ?"
        params: list[Any] = [organization_id]
        if claim_id:
            query += " AND claim_id = ?"
            params.append(claim_id)
        if paid_only:
            query += " AND payments > 0"
        if since:
            query += " AND service_date >= ?"
            params.append(since.isoformat())
        query += " ORDER BY service_date, created_at LIMIT ?"
        params.append(limit)

        with self.connection() as conn:
            return [self._row_to_charge(row) for row in conn.execute(query, params).fetchall()]

    def _row_to_charge(self, row: sqlite3.Row) -> Charge:
        return Charge(
            id=row["id"],
            organization_id=row["organization_id"],
            patient_id=row["patient_id"],
            claim_id=row["claim_id"],
            cpt_code=row["cpt_code"],
            service_date=_date(row["service_date"]),
            fee=row["fee"],
            units=row["units"],
            payments=row["payments"],
            adjustments=row["adjustments"],
            balance=row["balance"],
            status=ChargeStatus(row["status"]),
        )

    def add_fee_schedule_item(self, item: FeeScheduleItem) -> FeeScheduleItem:
        """Persist an expected allowed amount for a CPT code."""
        item_id = item.id or _new_id()
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO fee_schedule_items
                (id, organization_id, payer_id, cpt_code, allowed_amount, effective_date, end_date)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item_id,
                    item.organization_id,
                    item.payer_id,
                    item.cpt_code,
                    item.allowed_amount,
                    item.effective_date.isoformat(),
                    _iso(item.end_date),
                ),
            )
        logger.info(f"Added fee schedule amount {item.allowed_amount:.2f} for {item.cpt_code}")
        return FeeScheduleItem(
            id=item_id,
            organization_id=item.organization_id,
            cpt_code=item.cpt_code,
            allowed_amount=item.allowed_amount,
            effective_date=item.effective_date,
            end_date=item.end_date,
            payer_id=item.payer_id,
        )

    def find_fee_schedule_amount(
        self,
        organization_id: str,
        cpt_code: str,
        service_date: date | None = None,
        payer_id: str | None = None,
    ) -> float | None:
        """Allowed amount in effect on the service date.

        A payer-specific row wins over an organization-wide row.
        """
        on_date = (service_date or date.today()).isoformat()
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT allowed_amount FROM fee_schedule_items
                WHERE organization_id = ? AND cpt_code = ?
                  AND effective_date <= ?
                  AND (end_date IS NULL OR end_date >= ?)
                  AND (payer_id IS NULL OR payer_id = ?)
                ORDER BY (payer_id IS NULL), effective_date DESC
                LIMIT 1
                """,
                (organization_id, cpt_code, on_date, on_date, payer_id),
            ).fetchone()
        return row["allowed_amount"] if row else None

    def historical_average_paid(
        self,
        organization_id: str,
        cpt_code: str,
        as_of: date | None = None,
        lookback_days: int = HISTORY_LOOKBACK_DAYS,
        min_points: int = HISTORY_MIN_POINTS,
    ) -> float | None:
        """Average amount paid per charge for a CPT code over a recent window.

        Returns:
            The average, or None when fewer than ``min_points`` charges were paid
        """
        since = ((as_of or date.today()) - timedelta(days=lookback_days)).isoformat()
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT c.id, SUM(a.amount) AS paid
                FROM payment_allocations a
                JOIN charges c ON c.id = a.charge_id
                JOIN payments p ON p.id = a.payment_id
                WHERE c.organization_id = ? AND c.cpt_code = ?
                  AND a.amount > 0
                  AND COALESCE(p.payment_date, c.service_date) >= ?
                GROUP BY c.id
                """,
                (organization_id, cpt_code, since),
            ).fetchall()
        if len(rows) < min_points:
            return None
        return round(sum(row["paid"] for row in rows) / len(rows), 2)

    # ------------------------------------------------------------------
    # Remittances
    # ------------------------------------------------------------------

    def save_remittance(self, organization_id: str, remittance: Remittance) -> Remittance:
        """Store a parsed remittance and its service lines as line items.

        Re-saving a remittance with the same check number updates the header
        in place and replaces only the line items that are not yet posted.

        Args:
            organization_id: Owning organization
            remittance: Parsed remittance

        Returns:
            The remittance with ``id`` assigned
        """
        now = _now()
        check_number = remittance.check_number or None

        with self.connection() as conn:
            existing = None
            if check_number:
                existing = conn.execute(
                    "SELECT id, is_processed FROM remittances WHERE organization_id = ? AND check_number = ?",
                    (organization_id, check_number),
                ).fetchone()

            header = (
                _iso(remittance.check_date),
                remittance.payer_name,
                remittance.payer_id,
                remittance.payee_name,
                remittance.payee_id,
                remittance.payment_method,
                remittance.payment_amount,
                remittance.total_paid,
                remittance.total_adjusted,
                remittance.total_charges,
                remittance.claim_count,
                json.dumps([plb.to_dict() for plb in remittance.provider_adjustments]),
                remittance.raw_content,
            )

            posted_lines: set[int] = set()
            if existing:
                remittance.id = existing["id"]
                conn.execute(
                    """
                    UPDATE remittances
                    SET check_date = ?, payer_name = ?, payer_id = ?, payee_name = ?, payee_id = ?,
                        payment_method = ?, payment_amount = ?, total_paid = ?,
                        total_adjusted = ?, total_charges = ?, claim_count = ?,
                        provider_adjustments = ?, raw_content = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (*header, now, remittance.id),
                )
                posted_lines = {
                    row["line_number"]
                    for row in conn.execute(
                        "SELECT line_number FROM remittance_line_items WHERE remittance_id = ? AND is_posted = 1",
                        (remittance.id,),
                    )
                }
                conn.execute(
                    "DELETE FROM remittance_line_items WHERE remittance_id = ? AND is_posted = 0",
                    (remittance.id,),
                )
                remittance.is_processed = bool(existing["is_processed"])
            else:
                remittance.id = remittance.id or _new_id()
                conn.execute(
                    """
                    INSERT INTO remittances
                    (id, organization_id, check_number, check_date, payer_name, payer_id,
                     payee_name, payee_id, payment_method, payment_amount, total_paid,
                     total_adjusted, total_charges, claim_count, provider_adjustments,
                     raw_content, is_processed, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (remittance.id, organization_id, check_number, *header, now, now),
                )

            conn.execute("DELETE FROM remittance_claims WHERE remittance_id = ?", (remittance.id,))

            inserted = 0
            for claim_index, claim in enumerate(remittance.claims):
                self._insert_remittance_claim(
                    conn, organization_id, remittance.id, claim_index, claim
                )
                for svc in claim.services:
                    if svc.line_number in posted_lines:
                        svc.is_posted = True
                        continue
                    self._insert_line_item(
                        conn, organization_id, remittance.id, claim_index, claim, svc
                    )
                    inserted += 1

        action = "Updated" if existing else "Stored"
        logger.info(
            f"{action} remittance {remittance.id} (check {remittance.check_number}): "
            f"{inserted} line items, {len(posted_lines)} already posted"
        )
        return remittance

    def _insert_remittance_claim(
        self,
        conn: sqlite3.Connection,
        organization_id: str,
        remittance_id: str,
        claim_index: int,
        claim: RemittanceClaim,
    ) -> None:
        conn.execute(
            """
            INSERT INTO remittance_claims
            (id, remittance_id, organization_id, claim_index, patient_name,
             patient_account_number, payer_claim_number, patient_identifier, status_code,
             charged_amount, paid_amount, patient_responsibility, adjustments, remark_codes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _new_id(),
                remittance_id,
                organization_id,
                claim_index,
                claim.patient_name,
                claim.patient_account_number,
                claim.payer_claim_number,
                claim.patient_identifier,
                claim.status_code,
                claim.charged_amount,
                claim.paid_amount,
                claim.patient_responsibility,
                json.dumps([adj.to_dict() for adj in claim.adjustments]),
                json.dumps(claim.remark_codes),
            ),
        )

    def _insert_line_item(
        self,
        conn: sqlite3.Connection,
        organization_id: str,
        remittance_id: str,
        claim_index: int,
        claim: RemittanceClaim,
        svc: RemittanceService,
    ) -> None:
        conn.execute(
            """
            INSERT INTO remittance_line_items
            (id, remittance_id, organization_id, line_number, claim_index, patient_name,
             patient_account_number, payer_claim_number, claim_status_code, cpt_code,
             modifiers, units, service_date, charged_amount, allowed_amount, paid_amount,
             adjusted_amount, patient_amount, adjustments, remark_codes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _new_id(),
                remittance_id,
                organization_id,
                svc.line_number,
                claim_index,
                claim.patient_name,
                claim.patient_account_number,
                claim.payer_claim_number,
                claim.status_code,
                svc.cpt_code,
                json.dumps(svc.modifiers),
                svc.units,
                _iso(svc.service_date),
                svc.charged_amount,
                svc.allowed_amount,
                svc.paid_amount,
                svc.adjusted_amount,
                svc.patient_amount,
                json.dumps([adj.to_dict() for adj in svc.adjustments]),
                json.dumps(svc.remark_codes),
            ),
        )

    def get_remittance(self, organization_id: str, remittance_id: str) -> dict[str, Any] | None:
        """Remittance header row as a dict (without raw content)."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM remittances WHERE id = ? AND organization_id = ?",
                (remittance_id, organization_id),
            ).fetchone()
        if not row:
            return None
        data = dict(row)
        data.pop("raw_content", None)
        data["provider_adjustments"] = json.loads(data["provider_adjustments"] or "[]")
        data["is_processed"] = bool(data["is_processed"])
        return data

    def list_remittances(
        self, organization_id: str, limit: int = 100, offset: int = 0
    ) -> list[dict[str, Any]]:
        """List remittance headers, newest first."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, check_number, check_date, payer_name, payment_amount,
                       total_paid, claim_count, is_processed, created_at
                FROM remittances
                WHERE organization_id = ?
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
                """,
                (organization_id, limit, offset),
            ).fetchall()
        return [{**dict(row), "is_processed": bool(row["is_processed"])} for row in rows]

    def load_remittance(self, organization_id: str, remittance_id: str) -> Remittance:
        """Rebuild a Remittance from its header, claim payments and line items.

        Claim payments reported without service lines keep their claim-level
        adjustments and remarks, so the result matches a fresh parse.

        Raises:
            RecordNotFoundError: If the remittance does not exist
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM remittances WHERE id = ? AND organization_id = ?",
                (remittance_id, organization_id),
            ).fetchone()
            claim_rows = conn.execute(
                """
                SELECT * FROM remittance_claims
                WHERE remittance_id = ? AND organization_id = ?
                ORDER BY claim_index
                """,
                (remittance_id, organization_id),
            ).fetchall()
        if not row:
            raise RecordNotFoundError(f"Remittance not found: {remittance_id}")

        remittance = Remittance(
            id=row["id"],
            check_number=row["check_number"] or "",
            check_date=_date(row["check_date"]),
            payer_name=row["payer_name"] or "",
            payer_id=row["payer_id"],
            payee_name=row["payee_name"] or "",
            payee_id=row["payee_id"],
            payment_method=row["payment_method"] or "",
            payment_amount=row["payment_amount"],
            provider_adjustments=_provider_adjustments(row["provider_adjustments"]),
            raw_content=row["raw_content"] or "",
            is_processed=bool(row["is_processed"]),
        )

        claims = {
            claim_row["claim_index"]: self._row_to_remittance_claim(claim_row)
            for claim_row in claim_rows
        }
        # Posted lines kept from an earlier upload may have no stored claim group
        orphans: set[int] = set()
        for item in self.list_line_items(organization_id, remittance_id):
            claim = claims.get(item.claim_index)
            if claim is None:
                claim = claims[item.claim_index] = item.claim_context()
                orphans.add(item.claim_index)
            if item.claim_index in orphans:
                claim.charged_amount = round(claim.charged_amount + item.charged_amount, 2)
                claim.paid_amount = round(claim.paid_amount + item.paid_amount, 2)
                claim.patient_responsibility = round(
                    claim.patient_responsibility + item.patient_amount, 2
                )
            claim.services.append(item.to_service())

        remittance.claims = [claims[index] for index in sorted(claims)]
        remittance.recompute_totals()
        return remittance

    def list_line_items(
        self,
        organization_id: str,
        remittance_id: str,
        unposted_only: bool = False,
        line_item_ids: Iterable[str] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[RemittanceLineItem]:
        """Line items of a remittance in line order.

        Args:
            organization_id: Owning organization
            remittance_id: Remittance the items belong to
            unposted_only: Skip items already posted
            line_item_ids: Restrict to these ids
            conn: Read inside an already open transaction

        Returns:
            List of RemittanceLineItem objects
        """
        query = "SELECT * FROM remittance_line_items WHERE remittance_id = ? AND organization_id = ?"
        params: list[Any] = [remittance_id, organization_id]
        if unposted_only:
            query += " AND is_posted = 0"
        if line_item_ids is not None:
            ids = list(line_item_ids)
            if not ids:
                return []
            query += f" AND id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        query += " ORDER BY claim_index, line_number"

        if conn is not None:
            return [self._row_to_line_item(row) for row in conn.execute(query, params)]
        with self.connection() as own:
            return [self._row_to_line_item(row) for row in own.execute(query, params)]

    def record_match(
        self,
        organization_id: str,
        line_item_id: str,
        matched_claim_id: str | None,
        matched_charge_id: str | None,
        confidence: str,
        reason: str,
    ) -> bool:
        """Store a match outcome on an unposted line item.

        Returns:
            False when the item does not exist or is already posted
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE remittance_line_items
                SET matched_claim_id = ?, matched_charge_id = ?,
                    match_confidence = ?, match_reason = ?
                WHERE id = ? AND organization_id = ? AND is_posted = 0
                """,
                (
                    matched_claim_id,
                    matched_charge_id,
                    confidence,
                    reason,
                    line_item_id,
                    organization_id,
                ),
            )
            return cursor.rowcount > 0

    def adjustment_codes_for_charge(self, organization_id: str, charge_id: str) -> list[str]:
        """``GROUP-REASON`` codes from posted line items applied to a charge."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT adjustments FROM remittance_line_items
                WHERE organization_id = ? AND matched_charge_id = ? AND is_posted = 1
                ORDER BY posted_at
                """,
                (organization_id, charge_id),
            ).fetchall()
        codes: list[str] = []
        for row in rows:
            for adj in json.loads(row["adjustments"] or "[]"):
                code = f"{adj['group_code']}-{adj['reason_code']}"
                if code not in codes:
                    codes.append(code)
        return codes

    def _row_to_remittance_claim(self, row: sqlite3.Row) -> RemittanceClaim:
        return RemittanceClaim(
            patient_name=row["patient_name"] or "",
            patient_account_number=row["patient_account_number"],
            payer_claim_number=row["payer_claim_number"],
            patient_identifier=row["patient_identifier"],
            status_code=row["status_code"] or "",
            charged_amount=row["charged_amount"],
            paid_amount=row["paid_amount"],
            patient_responsibility=row["patient_responsibility"],
            adjustments=_adjustments(row["adjustments"]),
            remark_codes=json.loads(row["remark_codes"] or "[]"),
        )

    def _row_to_line_item(self, row: sqlite3.Row) -> RemittanceLineItem:
        return RemittanceLineItem(
            id=row["id"],
            remittance_id=row["remittance_id"],
            line_number=row["line_number"],
            claim_index=row["claim_index"],
            patient_name=row["patient_name"] or "",
            patient_account_number=row["patient_account_number"],
            payer_claim_number=row["payer_claim_number"],
            claim_status_code=row["claim_status_code"] or "",
            cpt_code=row["cpt_code"] or "",
            modifiers=json.loads(row["modifiers"] or "[]"),
            units=row["units"],
            service_date=_date(row["service_date"]),
            charged_amount=row["charged_amount"],
            allowed_amount=row["allowed_amount"],
            paid_amount=row["paid_amount"],
            adjusted_amount=row["adjusted_amount"],
            patient_amount=row["patient_amount"],
            adjustments=_adjustments(row["adjustments"]),
            remark_codes=json.loads(row["remark_codes"] or "[]"),
            is_posted=bool(row["is_posted"]),
            posted_at=row["posted_at"],
            posted_by=row["posted_by"],
            matched_claim_id=row["matched_claim_id"],
            matched_charge_id=row["matched_charge_id"],
            match_confidence=row["match_confidence"],
            match_reason=row["match_reason"],
        )

    # ------------------------------------------------------------------
    # Ledger writes (called inside a posting transaction)
    # ------------------------------------------------------------------

    def insert_payment(self, conn: sqlite3.Connection, payment: Payment) -> Payment:
        payment.id = payment.id or _new_id()
        conn.execute(
            """
            INSERT INTO payments
            (id, organization_id, claim_id, remittance_id, line_item_id, amount, method,
             reference, payment_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.id,
                payment.organization_id,
                payment.claim_id,
                payment.remittance_id,
                payment.line_item_id,
                payment.amount,
                payment.method,
                payment.reference,
                _iso(payment.payment_date),
                _now(),
            ),
        )
        return payment

    def insert_allocation(
        self, conn: sqlite3.Connection, allocation: PaymentAllocation
    ) -> PaymentAllocation:
        allocation_id = allocation.id or _new_id()
        conn.execute(
            """
            INSERT INTO payment_allocations (id, payment_id, charge_id, amount, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (allocation_id, allocation.payment_id, allocation.charge_id, allocation.amount, _now()),
        )
        return PaymentAllocation(
            id=allocation_id,
            payment_id=allocation.payment_id,
            charge_id=allocation.charge_id,
            amount=allocation.amount,
        )

    def update_charge_ledger(self, conn: sqlite3.Connection, charge: Charge) -> None:
        """Write back payments, adjustments, balance and status of a charge."""
        conn.execute(
            """
            UPDATE charges
            SET payments = ?, adjustments = ?, balance = ?, status = ?, updated_at = ?
            WHERE id = ? AND organization_id = ?
            """,
            (
                charge.payments,
                charge.adjustments,
                charge.balance,
                charge.status.value,
                _now(),
                charge.id,
                charge.organization_id,
            ),
        )

    def mark_line_item_posted(
        self,
        conn: sqlite3.Connection,
        organization_id: str,
        line_item_id: str,
        posted_by: str,
        posted_at: str | None = None,
    ) -> bool:
        """Flip the posted flag; False when another writer already posted it."""
        cursor = conn.execute(
            """
            UPDATE remittance_line_items
            SET is_posted = 1, posted_at = ?, posted_by = ?
            WHERE id = ? AND organization_id = ? AND is_posted = 0
            """,
            (posted_at or _now(), posted_by, line_item_id, organization_id),
        )
        return cursor.rowcount == 1

    def mark_remittance_processed(
        self, conn: sqlite3.Connection, organization_id: str, remittance_id: str
    ) -> None:
        conn.execute(
            """
            UPDATE remittances SET is_processed = 1, updated_at = ?
            WHERE id = ? AND organization_id = ?
            """,
            (_now(), remittance_id, organization_id),
        )

    def list_payments(self, organization_id: str, claim_id: str | None = None) -> list[Payment]:
        """List payments, optionally for one claim."""
        query = "SELECT * FROM payments WHERE organization_id = ?"
        params: list[Any] = [organization_id]
        if claim_id:
            query += " AND claim_id = ?"
            params.append(claim_id)
        with self.connection() as conn:
            rows = conn.execute(query + " ORDER BY created_at", params).fetchall()
        return [
            Payment(
                id=row["id"],
                organization_id=row["organization_id"],
                amount=row["amount"],
                method=row["method"],
                claim_id=row["claim_id"],
                remittance_id=row["remittance_id"],
                line_item_id=row["line_item_id"],
                reference=row["reference"],
                payment_date=_date(row["payment_date"]),
            )
            for row in rows
        ]

    def list_allocations(self, charge_id: str) -> list[PaymentAllocation]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM payment_allocations WHERE charge_id = ? ORDER BY created_at",
                (charge_id,),
            ).fetchall()
        return [
            PaymentAllocation(
                id=row["id"],
                payment_id=row["payment_id"],
                charge_id=row["charge_id"],
                amount=row["amount"],
            )
            for row in rows
        ]


# Stores keyed by database path
_stores: dict[str, BillingStore] = {}


def get_billing_store(db_path: str) -> BillingStore:
    """Get or create the store for a database path."""
    if db_path not in _stores:
        _stores[db_path] = BillingStore(db_path)
    return _stores[db_path]

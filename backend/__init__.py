"""Claims and Remittance Backend Package.

This package provides the FastAPI backend for professional claim
submission and payment reconciliation, including:

- ANSI X12 837P claim encoding, validation and decoding
- ANSI X12 835 remittance parsing and posting reports
- Matching of remittance lines to submitted claims and charges
- Posting of payments and adjustments to the charge ledger
- Denial analysis and underpayment detection

Usage:
    # Development (from project root):
    PYTHONPATH=backend uvicorn app:app --reload --port 8080

Modules:
    app: FastAPI application entry point
    edi: 837P and 835 codecs, reason codes, submitter profiles
    billing: Claim, charge, remittance and ledger persistence
    reconciliation: Remittance-to-claim matching
    posting: Payment and adjustment posting engine
    detection: Denial and underpayment detection
"""

__version__ = "0.1.0"

"""Shared configuration for the claims and remittance backend.

This module centralizes environment variable access and default values
to prevent drift between modules.
"""

import os

# Database configuration
DB_PATH = os.getenv("DB_PATH", "./data/billing.db")

# 837P interchange defaults (overridable per request or by a submitter profile)
EDI_SENDER_ID = os.getenv("EDI_SENDER_ID", "SUBMITTER")
EDI_RECEIVER_ID = os.getenv("EDI_RECEIVER_ID", "CLEARINGHOUSE")
EDI_SUBMITTER_NAME = os.getenv("EDI_SUBMITTER_NAME", "BILLING SUBMITTER")
EDI_SUBMITTER_ID = os.getenv("EDI_SUBMITTER_ID", "SUBMITTER")
EDI_USAGE_INDICATOR = os.getenv("EDI_USAGE_INDICATOR", "T")
EDI_SUBMITTER_CONFIG = os.getenv("EDI_SUBMITTER_CONFIG")

# Reconciliation: days either side of the service date for CPT + patient matches
MATCH_DATE_TOLERANCE_DAYS = int(os.getenv("MATCH_DATE_TOLERANCE_DAYS", "1"))

# Underpayment detection thresholds
UNDERPAYMENT_MIN_PERCENT = float(os.getenv("UNDERPAYMENT_MIN_PERCENT", "5"))
UNDERPAYMENT_MIN_AMOUNT = float(os.getenv("UNDERPAYMENT_MIN_AMOUNT", "5"))

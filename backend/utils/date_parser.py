"""Date parsing for query parameters and imported billing data."""

from __future__ import annotations

from datetime import date, datetime

# Reasonable date bounds for healthcare claims
MIN_VALID_YEAR = 1900
MAX_VALID_YEAR = 2100


def parse_flexible_date(date_str: str | None) -> date | None:
    """Parse a date from the formats billing staff and payers use.

    Supports ISO 8601 (2024-01-15), US (01/15/2024) and X12 compact
    (20240115). Impossible dates and years outside 1900-2100 are rejected.

    Args:
        date_str: Date string to parse, or None

    Returns:
        Parsed date, or None if parsing fails or input is None

    Examples:
        >>> parse_flexible_date("2024-01-15")
        datetime.date(2024, 1, 15)
        >>> parse_flexible_date("20240115")
        datetime.date(2024, 1, 15)
        >>> parse_flexible_date("2024-02-30") is None
        True
    """
    if not date_str:
        return None

    formats = [
        "%Y-%m-%d",  # ISO 8601
        "%m/%d/%Y",  # US format
        "%Y%m%d",  # X12 CCYYMMDD
    ]

    for fmt in formats:
        try:
            parsed = datetime.strptime(date_str.strip(), fmt)
        except ValueError:
            continue
        if MIN_VALID_YEAR <= parsed.year <= MAX_VALID_YEAR:
            return parsed.date()

    return None

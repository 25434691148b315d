"""Reconciliation of remittance lines against submitted claims and charges."""

from .matcher import ClaimLookup, MatchSummary, RemittanceMatcher, match_remittance
from .models import MatchConfidence, MatchResult

__all__ = [
    "ClaimLookup",
    "MatchConfidence",
    "MatchResult",
    "MatchSummary",
    "RemittanceMatcher",
    "match_remittance",
]

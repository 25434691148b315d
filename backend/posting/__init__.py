"""Posting of remittance payments and adjustments to the charge ledger."""

from .engine import PostingEngine
from .models import LinePostingResult, LinePostingStatus, PostingOptions, PostingResult

__all__ = [
    "LinePostingResult",
    "LinePostingStatus",
    "PostingEngine",
    "PostingOptions",
    "PostingResult",
]

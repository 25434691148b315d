"""ANSI X12 claim (837P) and remittance (835) codecs."""

from .config_loader import ConfigValidationError, load_submitter_config
from .edi_835 import EDI835ParseResult, EDI835Parser, is_835_content, parse_835
from .edi_837 import (
    ClaimRecord,
    EDI837Config,
    EDI837Encoder,
    EDI837Parser,
    EDI837Result,
    ValidationResult,
    generate_837p,
    validate_claim,
)
from .models import Adjustment, Remittance, RemittanceClaim, RemittanceService
from .report import PostingReport, generate_posting_report
from .segments import Delimiters, EDISegment, SegmentStream, detect_delimiters

__all__ = [
    "Adjustment",
    "ClaimRecord",
    "ConfigValidationError",
    "Delimiters",
    "EDI835ParseResult",
    "EDI835Parser",
    "EDI837Config",
    "EDI837Encoder",
    "EDI837Parser",
    "EDI837Result",
    "EDISegment",
    "PostingReport",
    "Remittance",
    "RemittanceClaim",
    "RemittanceService",
    "SegmentStream",
    "ValidationResult",
    "detect_delimiters",
    "generate_837p",
    "generate_posting_report",
    "is_835_content",
    "load_submitter_config",
    "parse_835",
    "validate_claim",
]

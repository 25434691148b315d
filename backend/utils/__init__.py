"""Shared utility functions for the billing backend."""

from .date_parser import parse_flexible_date
from .sanitization import decode_edi_bytes, has_edi_extension, sanitize_filename

__all__ = ["decode_edi_bytes", "has_edi_extension", "parse_flexible_date", "sanitize_filename"]

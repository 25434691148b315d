"""X12 segment tokenization shared by the 837 and 835 codecs.

The ISA segment is fixed width (106 characters including its terminator), so
the element separator, component separator and segment terminator can be read
from fixed offsets. Documents that do not start with a well-formed ISA fall
back to sniffing the common terminators.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime

ISA_LENGTH = 106

# ISA through its component separator (terminator excluded); leading whitespace or BOM is tolerated
_ISA_PATTERN = re.compile(r"ISA.{102}", re.DOTALL)
_SEGMENT_ID_PATTERN = re.compile(r"[A-Z][A-Z0-9]{1,2}")


@dataclass(frozen=True)
class Delimiters:
    """Separator characters for one interchange."""

    segment: str = "~"
    element: str = "*"
    subelement: str = ":"
    repetition: str = "^"


DEFAULT_DELIMITERS = Delimiters()


@dataclass
class EDISegment:
    """Represents an EDI segment.

    ``elements`` excludes the segment id, so ``get(0)`` is the 01 element.
    """

    id: str
    elements: list[str]
    raw: str = ""

    @classmethod
    def parse(cls, line: str, element_sep: str = "*") -> "EDISegment":
        """Parse a segment line."""
        raw = line.strip()
        parts = raw.split(element_sep)
        return cls(id=parts[0], elements=parts[1:] if len(parts) > 1 else [], raw=raw)

    def get(self, index: int, default: str = "") -> str:
        """Get element at index with default."""
        if 0 <= index < len(self.elements):
            return self.elements[index]
        return default

    def components(self, index: int, subelement_sep: str = ":") -> list[str]:
        """Split a composite element into its components."""
        value = self.get(index)
        return value.split(subelement_sep) if value else []


def detect_delimiters(content: str) -> Delimiters:
    """Detect separators from the ISA header, sniffing when it is absent.

    Args:
        content: Raw EDI text

    Returns:
        Delimiters for the interchange
    """
    isa_match = _ISA_PATTERN.search(content)
    if isa_match:
        isa = isa_match.group(0)
        element = isa[3]
        subelement = isa[104]
        # The terminator follows the component separator. A line break there is
        # either the terminator itself or padding before the real one.
        end = isa_match.end()
        segment = content[end] if len(content) > end else DEFAULT_DELIMITERS.segment
        if segment in "\r\n":
            segment = _terminator_after_line_break(content, end, element)
        parts = isa.split(element)
        repetition = parts[11] if len(parts) > 11 else ""
        if len(repetition) != 1:
            repetition = DEFAULT_DELIMITERS.repetition
        return Delimiters(
            segment=segment,
            element=element,
            subelement=subelement,
            repetition=repetition,
        )

    return _sniff_delimiters(content)


def _terminator_after_line_break(content: str, position: int, element: str) -> str:
    """Resolve the terminator when the ISA is followed by a line break."""
    rest = content[position:].lstrip()
    if not rest:
        return "\n"
    segment_id = _SEGMENT_ID_PATTERN.match(rest)
    if segment_id and rest[segment_id.end() : segment_id.end() + 1] == element:
        return "\n"
    return rest[0]


def _sniff_delimiters(content: str) -> Delimiters:
    """Guess separators for content without a fixed-width ISA."""
    element = DEFAULT_DELIMITERS.element
    for candidate in ("*", "|"):
        if candidate in content:
            element = candidate
            break

    segment = DEFAULT_DELIMITERS.segment
    for candidate in ("~", "'"):
        if candidate in content:
            segment = candidate
            break
    else:
        if "\n" in content:
            segment = "\n"

    return Delimiters(segment=segment, element=element)


class SegmentStream:
    """Lazy, restartable sequence of segments over one document.

    Each iteration re-tokenizes the underlying text, so a stream can be walked
    any number of times without holding every segment in memory.
    """

    def __init__(self, content: str, delimiters: Delimiters | None = None) -> None:
        self.content = content
        self.delimiters = delimiters or detect_delimiters(content)

    def __iter__(self) -> Iterator[EDISegment]:
        terminator = self.delimiters.segment
        text = self.content
        if terminator != "\n":
            text = text.replace("\r", "").replace("\n", "")

        start = 0
        while start < len(text):
            end = text.find(terminator, start)
            if end == -1:
                end = len(text)
            line = text[start:end].strip()
            start = end + len(terminator)
            if line:
                yield EDISegment.parse(line, self.delimiters.element)

    def find(self, segment_id: str) -> EDISegment | None:
        """Return the first segment with the given id."""
        for segment in self:
            if segment.id == segment_id:
                return segment
        return None

    def count(self) -> int:
        return sum(1 for _ in self)


def parse_edi_date(value: str) -> date | None:
    """Parse an EDI date (CCYYMMDD, or YYMMDD in ISA) into a date."""
    value = (value or "").strip()
    if len(value) >= 8:
        fmt, width = "%Y%m%d", 8
    elif len(value) == 6:
        fmt, width = "%y%m%d", 6
    else:
        return None

    try:
        return datetime.strptime(value[:width], fmt).date()
    except ValueError:
        return None


def format_edi_date(value: date | datetime) -> str:
    """Format a date as CCYYMMDD."""
    return value.strftime("%Y%m%d")


def parse_amount(value: str) -> float:
    """Parse a monetary element, treating blanks and junk as zero."""
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0

"""Tests for X12 segment tokenization and delimiter detection."""

from datetime import date

from conftest import build_isa
from edi.segments import (
    EDISegment,
    SegmentStream,
    detect_delimiters,
    format_edi_date,
    parse_amount,
    parse_edi_date,
)


class TestDetectDelimiters:
    """Test cases for detect_delimiters."""

    def test_reads_separators_from_isa(self):
        content = build_isa() + "GS*HP*A*B~"
        delimiters = detect_delimiters(content)
        assert delimiters.element == "*"
        assert delimiters.subelement == ":"
        assert delimiters.segment == "~"
        assert delimiters.repetition == "^"

    def test_custom_separators(self):
        isa = build_isa().replace("*", "|").replace(":~", ">'")
        delimiters = detect_delimiters(isa + "GS|HP|A|B'")
        assert delimiters.element == "|"
        assert delimiters.subelement == ">"
        assert delimiters.segment == "'"

    def test_line_break_terminator_from_isa(self):
        isa = build_isa()[:-1]
        assert detect_delimiters(isa + "\nGS*HP\nST*835*0001\n").segment == "\n"
        assert detect_delimiters(isa + "\r\nGS*HP\r\n").segment == "\n"

    def test_line_break_before_terminator_is_skipped(self):
        isa = build_isa()[:-1]
        assert detect_delimiters(isa + "\r\n~GS*HP~").segment == "~"

    def test_newline_terminated_stream(self):
        isa = build_isa()[:-1]
        stream = SegmentStream(isa + "\r\nGS*HP*A*B\r\nST*835*0001\r\n")
        assert [seg.id for seg in stream] == ["ISA", "GS", "ST"]
        assert stream.find("ST").get(0) == "835"

    def test_sniffs_without_isa(self):
        delimiters = detect_delimiters("ST*835*0001~BPR*I*10~")
        assert delimiters.element == "*"
        assert delimiters.segment == "~"

    def test_sniffs_newline_terminator(self):
        delimiters = detect_delimiters("ST|835|0001\nBPR|I|10\n")
        assert delimiters.element == "|"
        assert delimiters.segment == "\n"


class TestSegmentStream:
    """Test cases for SegmentStream."""

    def test_skips_blank_segments_and_line_breaks(self):
        stream = SegmentStream("ST*835*0001~\n\nBPR*I*10~\r\n~SE*2*0001~")
        assert [seg.id for seg in stream] == ["ST", "BPR", "SE"]

    def test_is_restartable(self):
        stream = SegmentStream("ST*835*0001~SE*2*0001~")
        assert stream.count() == 2
        assert stream.count() == 2

    def test_find_returns_first_match(self):
        stream = SegmentStream("ST*835*0001~N1*PR*PAYER~N1*PE*PAYEE~")
        assert stream.find("N1").get(1) == "PAYER"
        assert stream.find("CLP") is None


class TestEDISegment:
    """Test cases for EDISegment accessors."""

    def test_get_is_element_position_minus_one(self):
        segment = EDISegment.parse("CLP*ACCT1*1*100*80")
        assert segment.id == "CLP"
        assert segment.get(0) == "ACCT1"
        assert segment.get(3) == "80"
        assert segment.get(10, "x") == "x"

    def test_components(self):
        segment = EDISegment.parse("SVC*HC:99214:25*150*70")
        assert segment.components(0) == ["HC", "99214", "25"]
        assert segment.components(5) == []


class TestValueParsing:
    """Test cases for date and amount helpers."""

    def test_parse_edi_date(self):
        assert parse_edi_date("20240115") == date(2024, 1, 15)
        assert parse_edi_date("240115") == date(2024, 1, 15)
        assert parse_edi_date("20240230") is None
        assert parse_edi_date("") is None

    def test_format_edi_date(self):
        assert format_edi_date(date(2024, 1, 5)) == "20240105"

    def test_parse_amount(self):
        assert parse_amount("150.25") == 150.25
        assert parse_amount("") == 0.0
        assert parse_amount("abc") == 0.0

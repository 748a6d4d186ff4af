"""Tests for line protocol encoding and parsing."""

from __future__ import annotations

import pytest

from telemetry.errors import PointError
from telemetry.line_protocol import (
    encode_batch,
    encode_point,
    encoded_size,
    format_field_value,
    parse_line,
    parse_lines,
)
from telemetry.point import Batch, Point


class TestEncoding:
    """Tests for encode_point."""

    def test_encodes_basic_point(self) -> None:
        """Test encoding a point with tags and fields."""
        point = Point.create("cpu", {"env": "prod"}, {"usage": 0.5}, timestamp_ns=1_000)
        assert encode_point(point) == "cpu,env=prod usage=0.5 1000"

    def test_field_value_types(self) -> None:
        """Test each field value type encodes correctly."""
        assert format_field_value(7) == "7i"
        assert format_field_value(-3) == "-3i"
        assert format_field_value(1.25) == "1.25"
        assert format_field_value(True) == "true"
        assert format_field_value(False) == "false"
        assert format_field_value('say "hi"') == '"say \\"hi\\""'

    def test_escapes_reserved_characters(self) -> None:
        """Test commas, equals and spaces are escaped."""
        point = Point.create(
            "disk io,total",
            {"mount point": "a=b,c"},
            {"free space": 1},
            timestamp_ns=1,
        )
        assert encode_point(point) == "disk\\ io\\,total,mount\\ point=a\\=b\\,c free\\ space=1i 1"

    def test_measurement_keeps_equals(self) -> None:
        """Test measurement names leave equals unescaped."""
        point = Point.create("a=b", fields={"v": 1}, timestamp_ns=1)
        assert encode_point(point) == "a=b v=1i 1"

    def test_encode_batch_newline_joined(self) -> None:
        """Test batch payloads are newline joined."""
        points = [Point.create("m", fields={"i": i}, timestamp_ns=i) for i in range(3)]
        assert encode_batch(points) == b"m i=0i 0\nm i=1i 1\nm i=2i 2"

    def test_encoded_size_counts_separator(self) -> None:
        """Test encoded size includes the newline."""
        point = Point.create("m", fields={"i": 1}, timestamp_ns=1)
        assert encoded_size(point) == len("m i=1i 1") + 1


class TestParsing:
    """Tests for the collector-side grammar."""

    def test_round_trip_preserves_name_tags_fields(self) -> None:
        """Test parsing an encoded point restores it."""
        point = Point.create("latency", {"env": "prod"}, {"latency": 12.5}, timestamp_ns=1_700_000)
        payload = Batch([point]).encode()

        (parsed,) = parse_lines(payload)
        assert parsed.name == "latency"
        assert parsed.tags == (("env", "prod"),)
        assert parsed.fields == (("latency", 12.5),)
        assert parsed.timestamp_ns == point.timestamp_ns

    def test_round_trip_with_escapes_and_strings(self) -> None:
        """Test escaped characters and strings survive parsing."""
        point = Point.create(
            "disk io",
            {"path": "/var,log=x y", "host": "n1"},
            {"msg": 'a "quoted", spaced=value', "ok": False, "n": 42},
            timestamp_ns=99,
        )
        parsed = parse_line(encode_point(point))
        assert parsed == point

    def test_parses_without_timestamp(self) -> None:
        """Test a missing timestamp parses as zero."""
        parsed = parse_line("m v=1")
        assert parsed.timestamp_ns == 0
        assert parsed.fields == (("v", 1.0),)

    def test_parses_bool_shorthand(self) -> None:
        """Test t and F parse as booleans."""
        parsed = parse_line("m a=t,b=F 5")
        assert parsed.fields == (("a", True), ("b", False))

    def test_parse_lines_skips_blank_lines(self) -> None:
        """Test blank lines are ignored."""
        parsed = parse_lines("a v=1i 1\n\nb v=2i 2\n")
        assert [p.name for p in parsed] == ["a", "b"]

    def test_rejects_missing_fields(self) -> None:
        """Test a line without fields is rejected."""
        with pytest.raises(PointError, match="missing field section"):
            parse_line("measurement_only")

    def test_rejects_bad_field_value(self) -> None:
        """Test an unparseable field value is rejected."""
        with pytest.raises(PointError, match="invalid field value"):
            parse_line("m v=abc 1")

    def test_rejects_bad_timestamp(self) -> None:
        """Test a non-integer timestamp is rejected."""
        with pytest.raises(PointError, match="invalid timestamp"):
            parse_line("m v=1i soon")

    def test_rejects_unterminated_string(self) -> None:
        """Test an unterminated string field is rejected."""
        with pytest.raises(PointError, match="unterminated string"):
            parse_line('m v="open 1')

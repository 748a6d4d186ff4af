"""Line protocol encoding for the time-series collector.

One line per point::

    measurement,tag1=v1,tag2=v2 field1=1.5,field2=7i,field3="text" 1700000000000000000

``parse_line`` implements the collector-side grammar and is used to check
payloads produced by ``encode_point``.
"""

from __future__ import annotations

from collections.abc import Iterable

from telemetry.errors import PointError
from telemetry.point import FieldValue, Point

_MEASUREMENT_SPECIAL = ("\\", ",", " ")
_KEY_SPECIAL = ("\\", ",", "=", " ")
_STRING_SPECIAL = ("\\", '"')


def _escape(text: str, special: tuple[str, ...]) -> str:
    for char in special:
        text = text.replace(char, "\\" + char)
    return text


def format_field_value(value: FieldValue) -> str:
    """Render one field value in line protocol notation."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    return '"' + _escape(value, _STRING_SPECIAL) + '"'


def encode_point(point: Point) -> str:
    """Encode a point as one line (without trailing newline)."""
    parts = [_escape(point.name, _MEASUREMENT_SPECIAL)]
    for key, value in point.tags:
        parts.append(f"{_escape(key, _KEY_SPECIAL)}={_escape(value, _KEY_SPECIAL)}")
    fields = ",".join(
        f"{_escape(key, _KEY_SPECIAL)}={format_field_value(value)}" for key, value in point.fields
    )
    return f"{','.join(parts)} {fields} {point.timestamp_ns}"


def encode_batch(points: Iterable[Point]) -> bytes:
    """Encode points as a newline-joined UTF-8 payload."""
    return "\n".join(encode_point(point) for point in points).encode("utf-8")


def encoded_size(point: Point) -> int:
    """Size in bytes of the encoded line plus its separator."""
    return len(encode_point(point).encode("utf-8")) + 1


def _split(text: str, sep: str) -> list[str]:
    """Split on unescaped ``sep``, leaving escapes in place."""
    pieces: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            current.append(text[i : i + 2])
            i += 2
            continue
        if char == sep:
            pieces.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    pieces.append("".join(current))
    return pieces


def _split_fields(text: str) -> tuple[list[str], str]:
    """Split the field section on unescaped commas, honoring quoted string values.

    Returns the raw field pieces and whatever follows the section (the timestamp).
    """
    pieces: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            current.append(text[i : i + 2])
            i += 2
            continue
        if in_quotes:
            if char == '"':
                in_quotes = False
        elif char == '"' and current and current[-1] == "=":
            in_quotes = True
        elif char == ",":
            pieces.append("".join(current))
            current = []
            i += 1
            continue
        elif char == " ":
            pieces.append("".join(current))
            return pieces, text[i + 1 :]
        current.append(char)
        i += 1
    if in_quotes:
        raise PointError(f"unterminated string in {text!r}")
    pieces.append("".join(current))
    return pieces, ""


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def _split_pair(raw: str) -> tuple[str, str]:
    pieces = _split(raw, "=")
    if len(pieces) < 2 or not pieces[0]:
        raise PointError(f"expected key=value, got {raw!r}")
    return _unescape(pieces[0]), "=".join(pieces[1:])


def _parse_field_value(raw: str) -> FieldValue:
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return _unescape(raw[1:-1])
    if raw in ("true", "t", "T", "True", "TRUE"):
        return True
    if raw in ("false", "f", "F", "False", "FALSE"):
        return False
    try:
        if raw.endswith("i"):
            return int(raw[:-1])
        return float(raw)
    except ValueError as exc:
        raise PointError(f"invalid field value {raw!r}") from exc


def parse_line(line: str) -> Point:
    """Parse one line protocol record back into a point.

    Raises:
        PointError: If the line is malformed
    """
    key_section, *rest = _split(line.rstrip("\r\n"), " ")
    if not rest:
        raise PointError(f"missing field section: {line!r}")
    field_pieces, remainder = _split_fields(" ".join(rest))

    key_parts = _split(key_section, ",")
    name = _unescape(key_parts[0])
    tags = [(key, _unescape(value)) for key, value in map(_split_pair, key_parts[1:])]
    fields = [(key, _parse_field_value(value)) for key, value in map(_split_pair, field_pieces)]
    remainder = remainder.strip()
    try:
        timestamp_ns = int(remainder) if remainder else 0
    except ValueError as exc:
        raise PointError(f"invalid timestamp {remainder!r}") from exc

    return Point(name=name, timestamp_ns=timestamp_ns, tags=tuple(tags), fields=tuple(fields))


def parse_lines(payload: bytes | str) -> list[Point]:
    """Parse a newline-joined payload, skipping blank lines."""
    text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    return [parse_line(line) for line in text.split("\n") if line.strip()]

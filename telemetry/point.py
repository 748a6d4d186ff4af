"""Point and batch contracts for the telemetry shipping pipeline.

A point is one timestamped measurement: a series name, ordered tag pairs
(indexed dimensions) and ordered field pairs (values). Points are validated
on construction and immutable afterwards.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Union

from telemetry.errors import PointError

FieldValue = Union[int, float, bool, str]

TagPairs = tuple[tuple[str, str], ...]
FieldPairs = tuple[tuple[str, FieldValue], ...]

_RESERVED_LINE_CHARS = ("\n", "\r")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def now_ns() -> int:
    """Wall-clock timestamp in nanoseconds, truncated to microsecond resolution."""
    return time.time_ns() // 1_000 * 1_000


def _as_pairs(
    items: Mapping[str, Any] | Iterable[tuple[str, Any]] | None,
) -> tuple[tuple[Any, Any], ...]:
    if items is None:
        return ()
    if isinstance(items, Mapping):
        return tuple(items.items())
    try:
        return tuple((key, value) for key, value in items)
    except (TypeError, ValueError) as exc:
        raise PointError(f"expected (key, value) pairs: {exc}") from exc


@dataclass(frozen=True)
class Point:
    """Single measurement event.

    Attributes:
        name: Series name (e.g., "bank-process_transactions")
        timestamp_ns: Measurement timestamp (nanoseconds since epoch)
        tags: Ordered (key, value) string pairs, keys unique
        fields: Ordered (key, value) pairs with int/float/bool/str values
        level: Severity as a ``logging`` level (filtered against ``min_level``)

    Raises:
        PointError: If name or keys are empty or contain line separators,
            keys repeat, fields are empty, or a field value has an
            unsupported type, or an int field falls outside 64 bits
    """

    name: str
    timestamp_ns: int
    tags: TagPairs = ()
    fields: FieldPairs = ()
    level: int = field(default=logging.INFO, compare=False)

    def __post_init__(self) -> None:
        """Validate point contents."""
        object.__setattr__(self, "tags", _as_pairs(self.tags))
        object.__setattr__(self, "fields", _as_pairs(self.fields))
        self._validate_name()
        self._validate_timestamp()
        self._validate_tags()
        self._validate_fields()

    @classmethod
    def create(
        cls,
        name: str,
        tags: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        fields: Mapping[str, FieldValue] | Iterable[tuple[str, FieldValue]] | None = None,
        *,
        timestamp_ns: int | None = None,
        level: int = logging.INFO,
    ) -> Point:
        """Build a point from mappings or pair sequences, stamping the current time."""
        return cls(
            name=name,
            timestamp_ns=now_ns() if timestamp_ns is None else timestamp_ns,
            tags=_as_pairs(tags),
            fields=_as_pairs(fields),
            level=level,
        )

    def _validate_name(self) -> None:
        validate_name(self.name)

    def _validate_timestamp(self) -> None:
        if isinstance(self.timestamp_ns, bool) or not isinstance(self.timestamp_ns, int):
            raise PointError(f"timestamp_ns must be an int, got {type(self.timestamp_ns).__name__}")
        if self.timestamp_ns < 0:
            raise PointError(f"timestamp_ns must be >= 0, got {self.timestamp_ns}")

    def _validate_tags(self) -> None:
        seen: set[str] = set()
        for key, value in self.tags:
            _check_key("tag", key, seen)
            if not isinstance(value, str) or not value:
                raise PointError(f"tag {key!r} must have a non-empty string value")
            _check_reserved(f"tag {key!r} value", value)

    def _validate_fields(self) -> None:
        if not self.fields:
            raise PointError(f"point {self.name!r} must have at least one field")
        seen: set[str] = set()
        for key, value in self.fields:
            _check_key("field", key, seen)
            if not isinstance(value, (bool, int, float, str)):
                raise PointError(
                    f"field {key!r} has unsupported type {type(value).__name__}"
                )
            if isinstance(value, float) and not math.isfinite(value):
                raise PointError(f"field {key!r} must be finite, got {value}")
            if (
                isinstance(value, int)
                and not isinstance(value, bool)
                and not INT64_MIN <= value <= INT64_MAX
            ):
                raise PointError(f"field {key!r} is outside the 64-bit integer range: {value}")
            if isinstance(value, str):
                _check_reserved(f"field {key!r} value", value)

    def tag(self, key: str) -> str | None:
        """Return the value of tag ``key`` or None."""
        for tag_key, value in self.tags:
            if tag_key == key:
                return value
        return None

    def with_tag(self, key: str, value: str) -> Point:
        """Return a copy with ``key=value`` appended, unless the tag already exists."""
        if self.tag(key) is not None:
            return self
        return replace(self, tags=(*self.tags, (key, value)))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary.

        Returns:
            Dictionary representation of Point
        """
        return {
            "name": self.name,
            "timestamp_ns": self.timestamp_ns,
            "tags": dict(self.tags),
            "fields": dict(self.fields),
            "level": logging.getLevelName(self.level),
        }


def validate_name(name: object) -> None:
    """Raise :class:`PointError` unless ``name`` is usable as a series name."""
    if not isinstance(name, str) or not name:
        raise PointError("name must be a non-empty string")
    _check_reserved("name", name)


def _check_key(kind: str, key: object, seen: set[str]) -> None:
    if not isinstance(key, str) or not key:
        raise PointError(f"{kind} keys must be non-empty strings, got {key!r}")
    _check_reserved(f"{kind} key", key)
    if key in seen:
        raise PointError(f"duplicate {kind} key {key!r}")
    seen.add(key)


def _check_reserved(what: str, text: str) -> None:
    for char in _RESERVED_LINE_CHARS:
        if char in text:
            raise PointError(f"{what} must not contain line separators: {text!r}")


class Batch:
    """Ordered, non-empty group of points shipped in one request."""

    __slots__ = ("_points",)

    def __init__(self, points: Iterable[Point]) -> None:
        self._points = tuple(points)
        if not self._points:
            raise PointError("batch must contain at least one point")

    @property
    def points(self) -> tuple[Point, ...]:
        return self._points

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[Point]:
        return iter(self._points)

    def __repr__(self) -> str:
        return f"Batch(size={len(self._points)})"

    def encode(self) -> bytes:
        """Encode the batch as newline-joined line protocol."""
        from telemetry.line_protocol import encode_batch

        return encode_batch(self._points)

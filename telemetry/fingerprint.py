"""Stable identity digests for points."""

from __future__ import annotations

import hashlib

from telemetry.point import Point


def _component(tag: bytes, text: str) -> bytes:
    # Length-prefixed so that "a=b"/"c" and "a"/"b=c" never collide.
    raw = text.encode("utf-8")
    return tag + len(raw).to_bytes(4, "big") + raw


def fingerprint(point: Point) -> str:
    """Return a SHA-256 hex digest of the point's series identity.

    The digest covers the name, the tags (sorted by key) and the field keys
    (sorted). Timestamp, field values and level are excluded, so every point
    of the same series shares one fingerprint.
    """
    digest = hashlib.sha256()
    digest.update(_component(b"n", point.name))
    for key, value in sorted(point.tags):
        digest.update(_component(b"k", key))
        digest.update(_component(b"v", value))
    for key in sorted(key for key, _ in point.fields):
        digest.update(_component(b"f", key))
    return digest.hexdigest()

"""Identifier utilities for snapshots and keyword rows."""

from __future__ import annotations

import hashlib
import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    chars: list[str] = []
    current = value
    while current:
        current, remainder = divmod(current, 36)
        chars.append(_ALPHABET[remainder])
    return "".join(reversed(chars))


def generate_snapshot_id(category_id: str) -> str:
    """Return a sortable, collision-resistant snapshot identifier.

    The millisecond timestamp prefix keeps ids of one category ordered by
    creation time.
    """
    time_part = _to_base36(int(time.time() * 1000)).rjust(9, "0")
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(8))
    slug = category_id.replace(" ", "-")[:24]
    return f"snap_{slug}_{time_part}{random_part}"


def content_hash_id(*parts: str) -> str:
    """Return the sha256 hex digest of ``parts`` joined by ``|``."""
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

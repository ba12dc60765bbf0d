"""Unit tests for identifier utilities."""

from __future__ import annotations

import hashlib

from demand_sweep.core.ids import content_hash_id, generate_snapshot_id


def test_generate_snapshot_id_format_and_uniqueness() -> None:
    ids = [generate_snapshot_id("oral care") for _ in range(200)]

    assert len(ids) == len(set(ids))
    assert all(item.startswith("snap_oral-care_") for item in ids)
    assert all(len(item.rsplit("_", 1)[1]) == 17 for item in ids)


def test_content_hash_id_is_stable_and_order_sensitive() -> None:
    first = content_hash_id("shaving", "razor")

    assert first == hashlib.sha256(b"shaving|razor").hexdigest()
    assert first == content_hash_id("shaving", "razor")
    assert first != content_hash_id("razor", "shaving")

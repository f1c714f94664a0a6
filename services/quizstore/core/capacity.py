"""
Capacity model: pure size accounting for records and collections.

Both backends persist exactly `serialize_record(record)`, so the size
estimated before a write is the size reported by usage afterwards.
"""
from __future__ import annotations

import json
from typing import Any, Mapping, Union

from ..models import Draft, Quiz, UsageSnapshot

COLLECTIONS = ("quizzes", "drafts", "attachments")


def serialize_record(record: Mapping[str, Any]) -> str:
    """Canonical JSON text of a stored record."""
    return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def record_size(record: Mapping[str, Any]) -> int:
    """UTF-8 byte length of the stored form of `record`."""
    return len(serialize_record(record).encode("utf-8"))


def estimate_size(obj: Union[Quiz, Draft, Mapping[str, Any]]) -> int:
    """
    Bytes a save of `obj` will occupy.

    For a Quiz this is the document record (media as references) plus every
    attachment record it writes. Drafts keep media inline, so they are one
    record.
    """
    if isinstance(obj, Quiz):
        doc, attachments = obj.to_storage()
        return record_size(doc) + sum(record_size(a) for a in attachments)
    if isinstance(obj, Draft):
        return record_size(obj.to_storage())
    return record_size(obj)


def compute_usage(
    sizes: Mapping[str, int],
    capacity: int,
    near_limit_pct: float = 80.0,
) -> UsageSnapshot:
    """
    Build a snapshot from per-collection byte totals.

    `sizes` is keyed by collection name; missing collections count as empty.
    """
    quizzes = int(sizes.get("quizzes", 0))
    drafts = int(sizes.get("drafts", 0))
    attachments = int(sizes.get("attachments", 0))
    total = quizzes + drafts + attachments

    pct = (total / capacity * 100.0) if capacity > 0 else 100.0
    return UsageSnapshot(
        total_size=total,
        quizzes_size=quizzes,
        drafts_size=drafts,
        attachments_size=attachments,
        remaining_space=max(0, capacity - total),
        percentage_used=min(100.0, pct),
        is_near_limit=pct > near_limit_pct,
        capacity=capacity,
    )

from __future__ import annotations

import json
from typing import Any, Dict

from pydantic import ValidationError

from ..core.errors import CorruptRecord
from . import Attachment, Draft, Quiz


def _validate(model, collection: str, row: Dict[str, Any]):
    try:
        return model.model_validate(row)
    except ValidationError as e:
        raise CorruptRecord(collection, str(row.get("id", "?")), f"{e.error_count()} validation errors") from e


def quiz_from_record(row: Dict[str, Any]) -> Quiz:
    return _validate(Quiz, "quizzes", row)


def draft_from_record(row: Dict[str, Any]) -> Draft:
    return _validate(Draft, "drafts", row)


def attachment_from_record(row: Dict[str, Any]) -> Attachment:
    return _validate(Attachment, "attachments", row)


def parse_record(collection: str, record_id: str, raw: str) -> Dict[str, Any]:
    """
    Decode one stored record string.
    Raises CorruptRecord for anything that is not a JSON object with an id.
    """
    try:
        row = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CorruptRecord(collection, record_id, "not valid JSON") from e
    if not isinstance(row, dict) or "id" not in row:
        raise CorruptRecord(collection, record_id, "not a record object")
    return row


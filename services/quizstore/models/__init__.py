from __future__ import annotations

from .attachment import SIZE_CLASSES, Attachment, MimeClass, new_attachment_id
from .quiz import (
    Draft,
    Question,
    Quiz,
    QuizSettings,
    QuizStatus,
    Round,
    next_timestamp,
    utc_now,
)
from .usage import Notice, OperationResult, UsageSnapshot

__all__ = [
    "SIZE_CLASSES",
    "Attachment",
    "MimeClass",
    "new_attachment_id",
    "Draft",
    "Question",
    "Quiz",
    "QuizSettings",
    "QuizStatus",
    "Round",
    "next_timestamp",
    "utc_now",
    "Notice",
    "OperationResult",
    "UsageSnapshot",
]

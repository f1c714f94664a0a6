# services/quizstore/models/quiz.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field

from .attachment import Attachment

QuizStatus = Literal["draft", "finished"]
Difficulty = Literal["easy", "medium", "hard"]
QuestionType = Literal["single-answer", "multiple-choice", "picture", "audio", "video"]
RoundType = Literal[
    "mixed",
    "single-answer-only",
    "multiple-choice",
    "picture",
    "audio",
    "video",
    "golden-pyramid",
]

# Drop attachment bytes from every question when dumping a finished quiz
_STRIP_PAYLOADS = {"rounds": {"__all__": {"questions": {"__all__": {"media": {"payload"}}}}}}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(now: datetime, previous: Optional[datetime]) -> datetime:
    """
    Return `now`, or one microsecond past `previous` if the clock has not
    moved beyond it. Keeps per-record timestamps strictly increasing.
    """
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def _gen_id() -> str:
    return uuid4().hex


class QuizSettings(BaseModel):
    default_time_limit: float = 30
    default_points: float = 1
    default_breaking_time: float = 1


class Question(BaseModel):
    id: str = Field(default_factory=_gen_id)
    type: QuestionType = "single-answer"
    question: str = ""
    possible_answers: List[str] = Field(default_factory=list)
    correct_answers: List[int] = Field(default_factory=list)
    correct_answer_text: Optional[str] = None
    explanation: Optional[str] = None
    media: Optional[Attachment] = None
    difficulty: Difficulty = "medium"
    points: float = 1
    time_limit: float = 1


class Round(BaseModel):
    id: str = Field(default_factory=_gen_id)
    name: str = ""
    description: Optional[str] = None
    type: RoundType = "mixed"
    answer_reveal_mode: Literal["after-each", "after-all"] = "after-each"
    default_time_per_question: float = 1
    breaking_time: float = 1
    questions: List[Question] = Field(default_factory=list)


def _iter_media(rounds: List[Round]) -> Iterator[Attachment]:
    for rnd in rounds:
        for q in rnd.questions:
            if q.media is not None:
                yield q.media


class Quiz(BaseModel):
    """
    A finished (or finishing) quiz document.

    `id` is assigned once and never changes. `updated_at` is re-stamped by
    the document store on every successful save.
    """

    id: str = Field(default_factory=_gen_id)
    title: str
    description: Optional[str] = None
    category: str = "general"
    difficulty: Difficulty = "medium"
    status: QuizStatus = "finished"
    rounds: List[Round] = Field(default_factory=list)
    estimated_duration: float = 0
    settings: QuizSettings = Field(default_factory=QuizSettings)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def attachments(self) -> List[Attachment]:
        return list(_iter_media(self.rounds))

    def attachment_ids(self) -> List[str]:
        return [a.id for a in _iter_media(self.rounds)]

    def to_storage(self) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """
        Split into the document record (media kept as references) and one
        record per attachment carrying the bytes.
        """
        doc = self.model_dump(mode="json", exclude=_STRIP_PAYLOADS)
        attachments = [a.to_storage() for a in _iter_media(self.rounds) if a.payload is not None]
        return doc, attachments

    def with_payloads(self, payloads: Mapping[str, Optional[bytes]]) -> "Quiz":
        """Copy with attachment payloads filled in from `payloads` (id -> bytes)."""
        hydrated = self.model_copy(deep=True)
        for media in _iter_media(hydrated.rounds):
            if media.id in payloads:
                media.payload = payloads[media.id]
        return hydrated


class Draft(BaseModel):
    """
    In-progress quiz saved incrementally while editing.

    Shares the id space with Quiz. Media stays inline, so a draft record
    owns its attachments outright.
    """

    id: str = Field(default_factory=_gen_id)
    title: str = ""
    description: Optional[str] = None
    category: str = "general"
    difficulty: Difficulty = "medium"
    status: QuizStatus = "draft"
    rounds: List[Round] = Field(default_factory=list)
    estimated_duration: float = 0
    settings: QuizSettings = Field(default_factory=QuizSettings)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_saved: Optional[datetime] = None
    is_draft: Literal[True] = True

    def attachments(self) -> List[Attachment]:
        return list(_iter_media(self.rounds))

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_quiz(self, **overrides: Any) -> Quiz:
        """Build the finished quiz this draft turns into on completion."""
        data = self.model_dump(exclude={"last_saved", "is_draft"})
        data["status"] = "finished"
        data["created_at"] = data.get("created_at") or utc_now()
        data["updated_at"] = data.get("updated_at") or utc_now()
        data.update(overrides)
        return Quiz.model_validate(data)

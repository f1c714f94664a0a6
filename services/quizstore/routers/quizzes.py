# services/quizstore/routers/quizzes.py
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, status

from ..dependencies import Storage, ensure_success
from ..models import OperationResult, Quiz

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


@router.get("", response_model=List[Quiz])
async def list_quizzes(storage: Storage):
    """All finished quizzes (media as references, no payloads)."""
    return await storage.load_documents()


@router.get("/{quiz_id}", response_model=Quiz)
async def get_quiz(quiz_id: str, storage: Storage):
    """One finished quiz with its attachment payloads."""
    quiz = await storage.load_document(quiz_id)
    if quiz is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Quiz {quiz_id} not found")
    return quiz


@router.put("/{quiz_id}", response_model=OperationResult)
async def save_quiz(quiz_id: str, quiz: Quiz, storage: Storage):
    if quiz.id != quiz_id:
        quiz = quiz.model_copy(update={"id": quiz_id})
    return ensure_success(await storage.save_document(quiz))


@router.delete("/{quiz_id}", response_model=OperationResult)
async def delete_quiz(quiz_id: str, storage: Storage):
    """Delete a quiz, its attachments and any draft with the same id. Unknown ids succeed."""
    return ensure_success(await storage.delete_document(quiz_id))

# services/quizstore/routers/drafts.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, HTTPException, status

from ..dependencies import Storage, ensure_success
from ..models import Draft, OperationResult, Quiz
from ..schemas import CleanupIn, CleanupOut

router = APIRouter(prefix="/drafts", tags=["drafts"])


@router.get("", response_model=List[Draft])
async def list_drafts(storage: Storage):
    return await storage.load_drafts()


@router.get("/latest", response_model=Draft)
async def latest_draft(storage: Storage):
    """Most recently saved draft, for re-opening the editor after a crash."""
    draft = await storage.recover_latest_draft()
    if draft is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No drafts saved")
    return draft


@router.post("/cleanup", response_model=CleanupOut)
async def cleanup_drafts(storage: Storage, payload: Optional[CleanupIn] = Body(default=None)):
    max_age = payload.max_age_days if payload is not None else None
    removed = await storage.cleanup_aged_drafts(max_age)
    return CleanupOut(removed=removed)


@router.get("/{draft_id}", response_model=Draft)
async def get_draft(draft_id: str, storage: Storage):
    draft = await storage.load_draft(draft_id)
    if draft is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Draft {draft_id} not found")
    return draft


@router.put("/{draft_id}", response_model=OperationResult)
async def save_draft(draft_id: str, draft: Draft, storage: Storage):
    if draft.id != draft_id:
        draft = draft.model_copy(update={"id": draft_id})
    return ensure_success(await storage.save_draft(draft))


@router.delete("/{draft_id}", response_model=OperationResult)
async def delete_draft(draft_id: str, storage: Storage):
    return ensure_success(await storage.delete_draft(draft_id))


@router.post("/{draft_id}/promote", response_model=OperationResult)
async def promote_draft(draft_id: str, quiz: Quiz, storage: Storage):
    """Finish a draft: the quiz is written and the draft removed in one step."""
    return ensure_success(await storage.promote_draft(draft_id, quiz))

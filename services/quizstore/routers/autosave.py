# services/quizstore/routers/autosave.py
from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ..dependencies import Storage
from ..models import Draft
from ..schemas import AutoSaveStatusOut, SaveNowOut

router = APIRouter(prefix="/autosave", tags=["autosave"])


def _status(storage) -> AutoSaveStatusOut:
    state = storage.autosave_state
    if state is None:
        return AutoSaveStatusOut()
    return AutoSaveStatusOut(enabled=True, **state)


@router.post("", response_model=AutoSaveStatusOut)
async def enable_autosave(draft: Draft, storage: Storage):
    """Feed the latest editor content; the save happens after the debounce delay."""
    storage.enable_autosave(draft)
    return _status(storage)


@router.get("", response_model=AutoSaveStatusOut)
async def autosave_status(storage: Storage):
    return _status(storage)


@router.delete("", response_model=AutoSaveStatusOut)
async def disable_autosave(storage: Storage):
    storage.disable_autosave()
    return _status(storage)


@router.post("/save-now", response_model=SaveNowOut)
async def save_now(storage: Storage):
    if storage.autosave is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No auto-save session is active")
    saved = await storage.autosave_now()
    return SaveNowOut(saved=saved, autosave=_status(storage))

# services/quizstore/routers/storage.py
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, status

from ..dependencies import Storage, ensure_success
from ..models import OperationResult, UsageSnapshot
from ..schemas import InitializeOut, NoticeOut, SyncStatusOut

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/usage", response_model=UsageSnapshot)
async def get_usage(storage: Storage, fresh: bool = False):
    """Storage consumption. Without `fresh` the figure may be a few seconds old."""
    return await storage.get_usage(fresh=fresh)


@router.get("/status", response_model=SyncStatusOut)
async def get_sync_status(storage: Storage):
    return SyncStatusOut(sync_status=storage.sync_status)


@router.post("/initialize", response_model=InitializeOut)
async def initialize(storage: Storage):
    primary_active = await storage.initialize_storage()
    return InitializeOut(primary_active=primary_active, active_backend=storage.adapter.active_backend)


@router.delete("", response_model=OperationResult)
async def clear_storage(storage: Storage):
    """Wipe every quiz, draft and attachment on both backends."""
    return ensure_success(await storage.clear_all_storage())


@router.get("/debug")
async def debug_info(storage: Storage) -> Dict[str, Any]:
    return await storage.get_debug_info()


@router.get("/notices", response_model=List[NoticeOut])
async def list_notices(storage: Storage):
    return storage.notices


@router.delete("/notices/{notice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_notice(notice_id: str, storage: Storage):
    if not storage.dismiss_notice(notice_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Notice {notice_id} not found")

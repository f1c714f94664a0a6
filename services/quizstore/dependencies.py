# services/quizstore/dependencies.py
"""
DI helpers shared by the routers.
"""
from __future__ import annotations

from typing import Annotated, Dict

from fastapi import Depends, HTTPException, Request, status

from .core.storage_service import QuizStorageService
from .models import OperationResult

# error_code -> HTTP status for unsuccessful OperationResults
STATUS_BY_CODE: Dict[str, int] = {
    "capacity_exceeded": status.HTTP_507_INSUFFICIENT_STORAGE,
    "attachment_too_large": status.HTTP_507_INSUFFICIENT_STORAGE,
    "quota_exceeded": status.HTTP_507_INSUFFICIENT_STORAGE,
    "record_deleted": status.HTTP_409_CONFLICT,
    "backend_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "invalid_request": status.HTTP_400_BAD_REQUEST,
}


def get_storage_service(request: Request) -> QuizStorageService:
    return request.app.state.storage


Storage = Annotated[QuizStorageService, Depends(get_storage_service)]


def ensure_success(result: OperationResult) -> OperationResult:
    """Turn a failed OperationResult into the matching HTTPException."""
    if result.success:
        return result
    code = STATUS_BY_CODE.get(result.error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(
        status_code=code,
        detail={"error": result.error, "error_code": result.error_code, "id": result.id},
    )

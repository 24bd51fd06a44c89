# routers/progress_router.py
from fastapi import APIRouter, Depends

from paycollect.core.deps import get_progress_store
from paycollect.core.errors import NotFound
from paycollect.models.progress_model import OPERATION_KEYS

router = APIRouter(prefix="/progress", tags=["Progress"])


@router.get("/{operation_key}")
async def get_progress(operation_key: str, progress=Depends(get_progress_store)):
    """Current snapshot, or null when nothing is in flight (or it just finished)."""
    if operation_key not in OPERATION_KEYS:
        raise NotFound(f"Unknown operation '{operation_key}'")
    return {"operation_key": operation_key, "progress": progress.get(operation_key)}

# routers/dashboard_router.py
from fastapi import APIRouter, Depends

from paycollect.core.deps import get_paylink_service

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/stats")
async def dashboard_stats(service=Depends(get_paylink_service)):
    return service.dashboard_stats()

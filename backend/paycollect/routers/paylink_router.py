# routers/paylink_router.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from paycollect.core.config import settings
from paycollect.core.deps import get_link_store, get_orchestrator, get_paylink_service, get_progress_store
from paycollect.core.errors import NotifyError
from paycollect.models.paylink_model import BatchSmsRequest, FetchStatusResult, PaymentStatus, SmsStatus
from paycollect.models.progress_model import BATCH_SMS

logger = logging.getLogger("paycollect")
router = APIRouter(prefix="/payment-links", tags=["Payment Links"])


# --------------------------------------------------------------
# 1. LIST (with batch-send context for the UI)
# --------------------------------------------------------------
@router.get("/")
async def list_payment_links(
    status: Optional[PaymentStatus] = None,
    sms_status: Optional[SmsStatus] = None,
    limit: int = 25,
    store=Depends(get_link_store),
    progress=Depends(get_progress_store),
):
    unsent = store.unsent_link_ids()
    return {
        "links": store.list_links(payment_status=status, sms_status=sms_status, limit=min(limit, 200)),
        "unsent_count": len(unsent),
        "next_batch_ids": unsent[:settings.BATCH_SMS_MAX],
        "sending": progress.get(BATCH_SMS),
    }


# --------------------------------------------------------------
# 2. BATCH ACTIONS
# --------------------------------------------------------------
@router.post("/batch-sms", status_code=status.HTTP_202_ACCEPTED)
async def batch_send_sms(payload: BatchSmsRequest, orchestrator=Depends(get_orchestrator)):
    return orchestrator.trigger_batch_sms(payload.link_ids)


@router.post("/fetch-all", status_code=status.HTTP_202_ACCEPTED)
async def fetch_all_statuses(orchestrator=Depends(get_orchestrator)):
    return orchestrator.trigger_fetch_all()


# --------------------------------------------------------------
# 3. SINGLE LINK ACTIONS
# --------------------------------------------------------------
@router.post("/{link_id}/send-sms")
async def send_sms(link_id: str, service=Depends(get_paylink_service)):
    link = service.get_link_or_404(link_id)
    outcome = await service.send_sms(link)
    if not outcome.sent:
        # Already recorded as failed on the link; tell the caller why
        raise NotifyError(outcome.error or "Failed to send SMS")
    return {"success": True, "message": "SMS sent successfully.", "provider_message_id": outcome.provider_message_id}


@router.post("/{link_id}/fetch-status", response_model=FetchStatusResult)
async def fetch_status(link_id: str, service=Depends(get_paylink_service)):
    link = service.get_link_or_404(link_id)
    return await service.fetch_status(link)


@router.delete("/{link_id}")
async def delete_payment_link(link_id: str, service=Depends(get_paylink_service)):
    link = service.get_link_or_404(link_id)
    service.destroy(link)
    return {"success": True, "message": "Payment link deleted."}

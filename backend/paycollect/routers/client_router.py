# routers/client_router.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from paycollect.core.deps import get_orchestrator, get_paylink_service
from paycollect.models.paylink_model import (
    ClientBatchSmsRequest,
    GenerateLinksRequest,
    PaymentLink,
    PaymentLinkCreate,
    SendToPhoneRequest,
)
from paycollect.models.progress_model import GENERATE_LINKS

logger = logging.getLogger("paycollect")
router = APIRouter(prefix="/clients", tags=["Clients"])


# --------------------------------------------------------------
# 1. BULK LINK GENERATION
# --------------------------------------------------------------
@router.post("/payment-links/generate", status_code=status.HTTP_202_ACCEPTED)
async def generate_payment_links(
    payload: Optional[GenerateLinksRequest] = None,
    orchestrator=Depends(get_orchestrator),
):
    return orchestrator.trigger_generate_links(payload.client_ids if payload else None)


@router.post("/payment-links/cancel")
async def cancel_payment_link_generation(orchestrator=Depends(get_orchestrator)):
    return orchestrator.cancel(GENERATE_LINKS)


@router.post("/batch-sms", status_code=status.HTTP_202_ACCEPTED)
async def batch_send_client_sms(payload: ClientBatchSmsRequest, orchestrator=Depends(get_orchestrator)):
    return orchestrator.trigger_client_sms(payload.client_ids)


# --------------------------------------------------------------
# 2. SINGLE CLIENT
# --------------------------------------------------------------
@router.post("/{client_id}/payment-links", response_model=PaymentLink, status_code=status.HTTP_201_CREATED)
async def create_payment_link(
    client_id: str,
    payload: PaymentLinkCreate,
    service=Depends(get_paylink_service),
):
    client = service.get_client_or_404(client_id)
    link = await service.store(client, payload.amount, payload.description)
    return link


@router.post("/{client_id}/send-to-phone")
async def send_to_phone(
    client_id: str,
    payload: SendToPhoneRequest,
    service=Depends(get_paylink_service),
):
    client = service.get_client_or_404(client_id)
    link = await service.send_to_phone(client, payload.phone)
    return {"success": True, "message": f"Payment link sent to {payload.phone}.", "link_id": link.id}

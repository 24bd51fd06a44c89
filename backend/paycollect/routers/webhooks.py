# routers/webhooks.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from paycollect.core.deps import get_gateway, get_reconciler
from paycollect.core.errors import SignatureError
from paycollect.models.payment_model import CheckoutSessionCompleted

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger("paycollect.webhooks")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    gateway=Depends(get_gateway),
    reconciler=Depends(get_reconciler),
):
    # 1. Verify before trusting anything in the body
    payload = await request.body()
    try:
        event = gateway.verify_webhook(payload, stripe_signature)
    except SignatureError as e:
        logger.error(f"Stripe webhook signature verification failed: {e.message}")
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    logger.info(f"Stripe webhook received: {event.kind} ({event.event_id})")

    # 2. Only completed checkout sessions move money; everything else is acknowledged
    if isinstance(event, CheckoutSessionCompleted):
        session = event.session
        if not session.link_id:
            logger.warning(f"Webhook: session {session.id} has no payment_link")
        if not session.client_id:
            logger.warning(f"Webhook: no client_id in metadata for session {session.id}")

        if session.payment_status != "paid":
            logger.info(f"Webhook: session {session.id} completed but payment_status={session.payment_status}, waiting")
        else:
            recorded = reconciler.record_payment(session)
            logger.info(f"Webhook: session {session.id} {'recorded' if recorded else 'already handled'}")

    return {"received": True}

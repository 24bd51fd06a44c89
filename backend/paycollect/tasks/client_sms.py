# tasks/client_sms.py
import asyncio
import logging
from typing import Optional

from celery import shared_task

from paycollect.core.deps import get_paylink_service
from paycollect.core.errors import NotFound, ValidationError

logger = logging.getLogger("paycollect.jobs")


async def send_link_to_client(client_id: str, phone: Optional[str], *, service) -> dict:
    """Find or mint the client's link and text it. Missing client/balance is not retried."""
    try:
        outcome = await service.send_to_client(client_id, phone)
    except (NotFound, ValidationError) as e:
        logger.warning(f"send_link_to_client: client {client_id}: {e.message}")
        return {"status": "skipped", "reason": e.message}
    return {"status": outcome.outcome, "error": outcome.error}


@shared_task(
    name="paycollect.send_link_to_client",
    autoretry_for=(Exception,),
    max_retries=2,
    soft_time_limit=30,
    time_limit=45,
)
def send_link_to_client_task(client_id: str, phone: Optional[str] = None):
    return asyncio.run(send_link_to_client(client_id, phone, service=get_paylink_service()))

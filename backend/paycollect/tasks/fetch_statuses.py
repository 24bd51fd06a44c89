# tasks/fetch_statuses.py
import asyncio
import logging
from typing import Optional

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded

from paycollect.core.config import settings
from paycollect.core.deps import get_link_store, get_paylink_service

logger = logging.getLogger("paycollect.jobs")


async def fetch_all_statuses(*, service, store, delay: Optional[float] = None) -> dict:
    """
    Poll every pending link that has a gateway id. Sleeps between calls to
    stay well inside Stripe's rate limit. No progress entry; the list view
    re-polls instead.
    """
    delay = settings.STATUS_POLL_DELAY_SECONDS if delay is None else delay
    links = store.pending_links_with_gateway_id()

    tally = {"paid": 0, "expired": 0, "pending": 0, "error": 0, "skipped": 0}
    for link in links:
        try:
            result = await service.fetch_status(link)
            tally[result.status] += 1
        except SoftTimeLimitExceeded:
            raise
        except Exception as e:
            tally["error"] += 1
            logger.warning(f"fetch_all_statuses: link {link.id}: {e}")

        if delay:
            await asyncio.sleep(delay)

    logger.info(
        f"fetch_all_statuses: checked {len(links)} links, "
        f"{tally['paid']} paid, {tally['expired']} expired"
    )
    return {"checked": len(links), **tally}


@shared_task(
    name="paycollect.fetch_all_statuses",
    max_retries=0,
    soft_time_limit=600,
    time_limit=630,
)
def fetch_all_statuses_task():
    return asyncio.run(fetch_all_statuses(service=get_paylink_service(), store=get_link_store()))

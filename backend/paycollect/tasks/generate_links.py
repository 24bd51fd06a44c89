# tasks/generate_links.py
import asyncio
import logging
from typing import List, Optional

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded

from paycollect.core.config import settings
from paycollect.core.deps import get_link_store, get_paylink_service, get_progress_store
from paycollect.models.progress_model import GENERATE_LINKS, BatchProgress

logger = logging.getLogger("paycollect.jobs")


async def generate_links(
    client_ids: Optional[List[str]],
    *,
    service,
    store,
    progress,
    owner: str,
    flush_every: Optional[int] = None,
) -> dict:
    """
    Mint a payment link for every eligible client, one at a time in id order.

    Eligibility is re-checked here: clients that picked up a pending link or
    dropped below the minimum since the trigger are left out, and the
    progress total is re-seeded to match. A failing client is logged and
    skipped. The progress entry and the lease are gone when this returns.
    """
    flush_every = flush_every or settings.PROGRESS_FLUSH_EVERY

    if progress.was_cancelled(GENERATE_LINKS, owner):
        logger.info(f"generate_links[{owner}]: cancelled before start")
        return {"status": "cancelled"}
    progress.mark_started(GENERATE_LINKS, owner)

    lease_ttl = settings.GENERATE_LINKS_TIME_LIMIT
    if not progress.acquire(GENERATE_LINKS, owner, ttl=lease_ttl):
        logger.warning(f"generate_links[{owner}]: lease held by {progress.holder(GENERATE_LINKS)}, skipping")
        return {"status": "skipped"}

    total = created = failed = 0
    try:
        eligible = store.eligible_client_ids(settings.MIN_ELIGIBLE_BALANCE, client_ids)
        total = len(eligible)
        if total == 0:
            logger.info(f"generate_links[{owner}]: no eligible clients")
            return {"status": "done", "total": 0, "created": 0, "failed": 0}

        snapshot = BatchProgress.start(GENERATE_LINKS, total)
        seeded = progress.get(GENERATE_LINKS)
        if seeded is not None:
            snapshot = snapshot.model_copy(update={"started_at": seeded.started_at})
        progress.checkpoint(snapshot, owner, lease_ttl)

        for processed, client_id in enumerate(eligible, start=1):
            try:
                client = store.get_client(client_id)
                if client is None:
                    logger.warning(f"generate_links: client {client_id} vanished, skipping")
                else:
                    await service.store(client, client.link_amount())
                    created += 1
            except SoftTimeLimitExceeded:
                raise
            except Exception as e:
                failed += 1
                logger.warning(f"generate_links: client {client_id}: {e}")

            if processed % flush_every == 0 or processed == total:
                snapshot = snapshot.advance_to(processed)
                progress.checkpoint(snapshot, owner, lease_ttl)
    finally:
        progress.finish(GENERATE_LINKS, owner)

    logger.info(f"generate_links[{owner}]: {created} created, {failed} failed of {total}")
    return {"status": "done", "total": total, "created": created, "failed": failed}


@shared_task(
    bind=True,
    name="paycollect.generate_payment_links",
    autoretry_for=(Exception,),
    dont_autoretry_for=(SoftTimeLimitExceeded,),
    max_retries=3,
    retry_backoff=True,
    soft_time_limit=settings.GENERATE_LINKS_TIME_LIMIT,
    time_limit=settings.GENERATE_LINKS_TIME_LIMIT + 60,
)
def generate_payment_links_task(self, client_ids: Optional[List[str]] = None):
    return asyncio.run(generate_links(
        client_ids,
        service=get_paylink_service(),
        store=get_link_store(),
        progress=get_progress_store(),
        owner=self.request.id,
    ))

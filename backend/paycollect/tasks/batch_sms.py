# tasks/batch_sms.py
import asyncio
import logging
from typing import List, Optional

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded

from paycollect.core.config import settings
from paycollect.core.deps import get_link_store, get_paylink_service, get_progress_store
from paycollect.models.progress_model import BATCH_SMS, BatchProgress

logger = logging.getLogger("paycollect.jobs")


async def batch_send_sms(
    link_ids: List[str],
    *,
    service,
    store,
    progress,
    owner: str,
    flush_every: Optional[int] = None,
) -> dict:
    """
    Text every link in the batch that is still pending and unsent at run
    time. The caller's snapshot is not trusted: a link may have been paid or
    texted while the job sat in the queue.
    """
    flush_every = flush_every or settings.PROGRESS_FLUSH_EVERY

    if progress.was_cancelled(BATCH_SMS, owner):
        logger.info(f"batch_send_sms[{owner}]: cancelled before start")
        return {"status": "cancelled"}
    progress.mark_started(BATCH_SMS, owner)

    lease_ttl = settings.BATCH_SMS_TIME_LIMIT
    if not progress.acquire(BATCH_SMS, owner, ttl=lease_ttl):
        logger.warning(f"batch_send_sms[{owner}]: lease held by {progress.holder(BATCH_SMS)}, skipping")
        return {"status": "skipped"}

    total = sent = failed = 0
    try:
        links = [link for link in store.get_links(link_ids[:settings.BATCH_SMS_MAX]) if link.is_sms_eligible]
        total = len(links)
        if total == 0:
            logger.info(f"batch_send_sms[{owner}]: nothing eligible")
            return {"status": "done", "total": 0, "sent": 0, "failed": 0}

        snapshot = BatchProgress.start(BATCH_SMS, total)
        seeded = progress.get(BATCH_SMS)
        if seeded is not None:
            snapshot = snapshot.model_copy(update={"started_at": seeded.started_at})
        progress.checkpoint(snapshot, owner, lease_ttl)

        for processed, link in enumerate(links, start=1):
            try:
                outcome = await service.send_sms(link)
                if outcome.sent:
                    sent += 1
                else:
                    failed += 1
            except SoftTimeLimitExceeded:
                raise
            except Exception as e:
                failed += 1
                logger.warning(f"batch_send_sms: link {link.id}: {e}")

            if processed % flush_every == 0 or processed == total:
                snapshot = snapshot.advance_to(processed)
                progress.checkpoint(snapshot, owner, lease_ttl)
    finally:
        progress.finish(BATCH_SMS, owner)

    logger.info(f"batch_send_sms[{owner}]: processed {total} links, {sent} sent, {failed} failed")
    return {"status": "done", "total": total, "sent": sent, "failed": failed}


# tries=1: a failed batch is redispatched by a person, never automatically
@shared_task(
    bind=True,
    name="paycollect.batch_send_sms",
    max_retries=0,
    soft_time_limit=settings.BATCH_SMS_TIME_LIMIT,
    time_limit=settings.BATCH_SMS_TIME_LIMIT + 30,
)
def batch_send_sms_task(self, link_ids: List[str]):
    return asyncio.run(batch_send_sms(
        link_ids,
        service=get_paylink_service(),
        store=get_link_store(),
        progress=get_progress_store(),
        owner=self.request.id,
    ))

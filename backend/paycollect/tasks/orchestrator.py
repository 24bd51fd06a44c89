# tasks/orchestrator.py
"""
Synchronous trigger side of the batch jobs.

A trigger validates its input, takes the operation lease, seeds the progress
entry so the UI can show it immediately, enqueues the Celery task and
returns. It never waits on Stripe or Twilio.
"""
import logging
import uuid
from typing import List, Optional

from paycollect.core.celery_app import celery_app
from paycollect.core.config import settings
from paycollect.core.errors import LeaseHeld, ValidationError
from paycollect.models.progress_model import BATCH_SMS, GENERATE_LINKS, BatchProgress
from paycollect.utils.phone import resolve_phone

logger = logging.getLogger("paycollect.jobs")

# Celery task names, registered by the modules listed in celery_app include=
GENERATE_LINKS_TASK = "paycollect.generate_payment_links"
BATCH_SMS_TASK = "paycollect.batch_send_sms"
FETCH_ALL_TASK = "paycollect.fetch_all_statuses"
CLIENT_SMS_TASK = "paycollect.send_link_to_client"

OPERATION_TASKS = {
    GENERATE_LINKS: (GENERATE_LINKS_TASK, settings.GENERATE_LINKS_TIME_LIMIT),
    BATCH_SMS: (BATCH_SMS_TASK, settings.BATCH_SMS_TIME_LIMIT),
}


class JobOrchestrator:

    def __init__(self, store, progress, celery=None):
        self._store = store
        self._progress = progress
        self._celery = celery or celery_app

    # --------------------------------------------------------------
    # Internal: lease → seed → enqueue
    # --------------------------------------------------------------
    def _dispatch(self, op: str, total: int, args: list) -> str:
        task_name, lease_ttl = OPERATION_TASKS[op]
        task_id = uuid.uuid4().hex

        if not self._progress.acquire(op, task_id, ttl=lease_ttl):
            raise LeaseHeld(f"'{op}' is already running")

        self._progress.put(BatchProgress.start(op, total))
        self._progress.register_task(op, task_id)
        try:
            self._celery.send_task(task_name, args=args, task_id=task_id)
        except Exception:
            self._progress.mark_started(op, task_id)
            self._progress.delete(op)
            self._progress.release(op, task_id)
            raise

        logger.info(f"{op}: queued task {task_id} for {total} items")
        return task_id

    # --------------------------------------------------------------
    # Triggers
    # --------------------------------------------------------------
    def trigger_generate_links(self, client_ids: Optional[List[str]] = None) -> dict:
        """
        Queue link generation for the given clients, or every eligible client.
        Zero eligible is a success with nothing queued and no progress entry.
        """
        if client_ids is not None and not client_ids:
            raise ValidationError("client_ids must not be empty")
        if client_ids:
            known = {c.id for c in self._store.get_clients(client_ids)}
            unknown = sorted(set(client_ids) - known)
            if unknown:
                raise ValidationError(f"Unknown client ids: {', '.join(unknown)}")

        eligible = self._store.eligible_client_ids(settings.MIN_ELIGIBLE_BALANCE, client_ids)
        if not eligible:
            return {
                "queued": 0,
                "task_id": None,
                "message": "All eligible clients already have pending payment links.",
            }

        count = len(eligible)
        task_id = self._dispatch(GENERATE_LINKS, count, [eligible])
        return {
            "queued": count,
            "task_id": task_id,
            "message": f"Queued payment link generation for {count} {'client' if count == 1 else 'clients'}.",
        }

    def trigger_batch_sms(self, link_ids: List[str]) -> dict:
        if not link_ids:
            raise ValidationError("link_ids must not be empty")
        if len(link_ids) > settings.BATCH_SMS_MAX:
            raise ValidationError(f"At most {settings.BATCH_SMS_MAX} links per batch")

        links = self._store.get_links(link_ids)
        unknown = sorted(set(link_ids) - {link.id for link in links})
        if unknown:
            raise ValidationError(f"Unknown payment link ids: {', '.join(unknown)}")

        eligible = [link for link in links if link.is_sms_eligible]
        if not eligible:
            raise ValidationError("No eligible payment links in the selected batch.")

        count = len(eligible)
        task_id = self._dispatch(BATCH_SMS, count, [sorted(set(link_ids))])
        return {
            "queued": count,
            "task_id": task_id,
            "message": f"Queued SMS for up to {count} payment links.",
        }

    def trigger_fetch_all(self) -> dict:
        pending = len(self._store.pending_links_with_gateway_id())
        if pending == 0:
            return {"queued": 0, "task_id": None, "message": "No pending payment links to check."}

        result = self._celery.send_task(FETCH_ALL_TASK)
        return {
            "queued": pending,
            "task_id": result.id,
            "message": f"Queued status check for {pending} pending payment links. Refresh in a moment.",
        }

    def trigger_client_sms(self, client_ids: List[str]) -> dict:
        """One send_link_to_client job per client that has a number on file."""
        if not client_ids:
            raise ValidationError("client_ids must not be empty")
        clients = self._store.get_clients(client_ids)
        unknown = sorted(set(client_ids) - {c.id for c in clients})
        if unknown:
            raise ValidationError(f"Unknown client ids: {', '.join(unknown)}")

        dispatched = 0
        for client in clients:
            phone = resolve_phone(client)
            if phone:
                self._celery.send_task(CLIENT_SMS_TASK, args=[client.id, phone])
                dispatched += 1
        return {
            "queued": dispatched,
            "message": f"Queued SMS for {dispatched} {'client' if dispatched == 1 else 'clients'}.",
        }

    # --------------------------------------------------------------
    # Cancellation
    # --------------------------------------------------------------
    def cancel(self, op: str) -> dict:
        """
        Drop queued-but-unstarted jobs for `op` and clear its progress.
        A job already inside its loop finishes; it keeps its lease so a new
        trigger cannot overlap it.
        """
        if op not in OPERATION_TASKS:
            raise ValidationError(f"Unknown operation '{op}'")

        task_ids = self._progress.cancel_queued(op)
        if task_ids:
            self._celery.control.revoke(task_ids)

        holder = self._progress.holder(op)
        if holder and holder in task_ids:
            self._progress.release(op, holder)

        self._progress.delete(op)
        logger.info(f"{op}: cancelled {len(task_ids)} queued task(s)")

        if task_ids:
            message = "Batch cancelled."
        else:
            message = "Batch was already running or finished; progress cleared."
        return {"cancelled": len(task_ids), "message": message}

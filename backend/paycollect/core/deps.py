# core/deps.py
"""
Wiring for routers (via Depends) and the Celery task wrappers.
Tests swap these out with app.dependency_overrides.
"""
from functools import lru_cache

from paycollect.core.firebase import get_db
from paycollect.core.redis import get_redis
from paycollect.services.channels import TwilioNotifier
from paycollect.services.link_store import FirestoreLinkStore
from paycollect.services.paylink_service import PaymentLinkService
from paycollect.services.progress import ProgressStore
from paycollect.services.reconciliation import ReconciliationEngine
from paycollect.services.stripe_gateway import StripeGateway


@lru_cache
def get_link_store() -> FirestoreLinkStore:
    return FirestoreLinkStore(get_db())


@lru_cache
def get_gateway() -> StripeGateway:
    return StripeGateway()


@lru_cache
def get_notifier() -> TwilioNotifier:
    return TwilioNotifier()


@lru_cache
def get_progress_store() -> ProgressStore:
    return ProgressStore(get_redis())


def get_reconciler() -> ReconciliationEngine:
    return ReconciliationEngine(get_link_store())


def get_paylink_service() -> PaymentLinkService:
    store = get_link_store()
    return PaymentLinkService(
        store=store,
        gateway=get_gateway(),
        notifier=get_notifier(),
        reconciler=ReconciliationEngine(store),
    )


def get_orchestrator():
    from paycollect.tasks.orchestrator import JobOrchestrator

    return JobOrchestrator(store=get_link_store(), progress=get_progress_store())

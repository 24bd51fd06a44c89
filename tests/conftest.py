"""
Shared fixtures: an in-memory link store with the same transaction contract
as the Firestore one, a dict-backed Redis double, and stub gateway/SMS
adapters.
"""
import threading
from datetime import datetime, timezone
from itertools import count
from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from paycollect.core.errors import DuplicatePayment, GatewayError
from paycollect.models.client_model import Client
from paycollect.models.paylink_model import PaymentLink, utcnow
from paycollect.models.payment_model import CheckoutSession, PaymentRecord
from paycollect.services.channels import SmsOutcome
from paycollect.services.link_store import new_link_id
from paycollect.services.paylink_service import PaymentLinkService
from paycollect.services.progress import _LUA_DELETE_IF_OWNER, _LUA_REFRESH_IF_OWNER, ProgressStore
from paycollect.services.reconciliation import ReconciliationEngine
from paycollect.services.stripe_gateway import GatewayLink


# ============================================================================
# IN-MEMORY STORE
# ============================================================================


class InMemoryUnit:
    """Reads see committed state; writes are staged until the unit commits."""

    def __init__(self, store: "InMemoryLinkStore"):
        self._store = store
        self.payments: List[PaymentRecord] = []
        self.client_updates: List[tuple] = []
        self.link_updates: List[tuple] = []

    def get_client(self, client_id):
        return self._store.get_client(client_id)

    def get_link(self, link_id):
        return self._store.get_link(link_id)

    def find_link_by_gateway_id(self, gateway_link_id):
        return self._store.find_link_by_gateway_id(gateway_link_id)

    def get_payment(self, session_id):
        return self._store.get_payment(session_id)

    def create_payment(self, record: PaymentRecord):
        self.payments.append(record)

    def update_client(self, client_id, fields):
        self.client_updates.append((client_id, fields))

    def update_link(self, link_id, fields):
        self.link_updates.append((link_id, fields))


class InMemoryLinkStore:
    def __init__(self):
        self.clients: Dict[str, Client] = {}
        self.links: Dict[str, PaymentLink] = {}
        self.payments: Dict[str, PaymentRecord] = {}
        self._lock = threading.RLock()

    # ---------- seeding ----------
    def add_client(self, client: Client) -> Client:
        self.clients[client.id] = client
        return client

    # ---------- clients ----------
    def get_client(self, client_id):
        return self.clients.get(str(client_id))

    def get_clients(self, client_ids):
        return sorted((self.clients[c] for c in set(client_ids) if c in self.clients), key=lambda c: c.id)

    def eligible_client_ids(self, minimum, client_ids=None):
        candidates = self.clients.values() if client_ids is None else self.get_clients(client_ids)
        pending = self.client_ids_with_pending_link()
        return sorted(
            c.id for c in candidates
            if c.id not in pending and c.has_chargeable_balance(minimum)
        )

    def client_ids_with_pending_link(self, client_ids=None):
        found = {link.client_id for link in self.links.values() if link.payment_status == "pending"}
        return found if client_ids is None else found & set(client_ids)

    # ---------- payment links ----------
    def create_link(self, link: PaymentLink) -> PaymentLink:
        link = link.model_copy(update={"id": link.id or new_link_id()})
        self.links[link.id] = link
        return link

    def get_link(self, link_id):
        return self.links.get(str(link_id))

    def get_links(self, link_ids):
        return sorted((self.links[i] for i in set(link_ids) if i in self.links), key=lambda link: link.id)

    def find_link_by_gateway_id(self, gateway_link_id):
        return next((link for link in self.links.values() if link.gateway_link_id == gateway_link_id), None)

    def update_link(self, link_id, fields):
        self.links[link_id] = self.links[link_id].model_copy(update={**fields, "updated_at": utcnow()})

    def delete_link(self, link_id):
        return self.links.pop(link_id, None) is not None

    def list_links(self, payment_status=None, sms_status=None, limit=25):
        links = [
            link for link in self.links.values()
            if (not payment_status or link.payment_status == payment_status)
            and (not sms_status or link.sms_status == sms_status)
        ]
        links.sort(key=lambda link: link.created_at, reverse=True)
        return links[:limit]

    def latest_pending_link(self, client_id):
        pending = [
            link for link in self.links.values()
            if link.client_id == client_id and link.payment_status == "pending"
        ]
        return max(pending, key=lambda link: link.created_at, default=None)

    def pending_links_with_gateway_id(self):
        return sorted(
            (link for link in self.links.values() if link.payment_status == "pending" and link.gateway_link_id),
            key=lambda link: link.id,
        )

    def unsent_link_ids(self, limit=None):
        ids = sorted(link.id for link in self.links.values() if link.is_sms_eligible)
        return ids[:limit] if limit is not None else ids

    def paid_links_since(self, since):
        return [
            link for link in self.links.values()
            if link.payment_status == "paid" and link.paid_at and link.paid_at >= since
        ]

    def recent_paid(self, limit=5):
        paid = [link for link in self.links.values() if link.payment_status == "paid"]
        paid.sort(key=lambda link: link.paid_at, reverse=True)
        return paid[:limit]

    # ---------- payment records ----------
    def get_payment(self, session_id):
        return self.payments.get(session_id)

    # ---------- transactions ----------
    def transaction(self, fn: Callable):
        with self._lock:
            unit = InMemoryUnit(self)
            result = fn(unit)
            for record in unit.payments:
                if record.gateway_session_id in self.payments:
                    raise DuplicatePayment(record.gateway_session_id)
            for record in unit.payments:
                self.payments[record.gateway_session_id] = record.model_copy(
                    update={"id": record.gateway_session_id}
                )
            for client_id, fields in unit.client_updates:
                self.clients[client_id] = self.clients[client_id].model_copy(update=fields)
            for link_id, fields in unit.link_updates:
                self.update_link(link_id, fields)
            return result


# ============================================================================
# REDIS DOUBLE
# ============================================================================


class FakeRedis:
    """The handful of redis-py calls ProgressStore makes, with decode_responses=True semantics."""

    def __init__(self):
        self.data: Dict[str, object] = {}
        self.ttls: Dict[str, int] = {}

    def get(self, key):
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.data.pop(key, None) is not None
            self.ttls.pop(key, None)
        return removed

    def expire(self, key, seconds):
        if key in self.data:
            self.ttls[key] = seconds
            return True
        return False

    def sadd(self, key, *members):
        bucket = self.data.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    def srem(self, key, *members):
        bucket = self.data.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    def smembers(self, key):
        return set(self.data.get(key, set()))

    def sismember(self, key, member):
        return member in self.data.get(key, set())

    def eval(self, script, numkeys, *keys_and_args):
        """Runs the two owner-checked lease scripts ProgressStore ships."""
        keys, args = keys_and_args[:numkeys], keys_and_args[numkeys:]
        key, owner = keys[0], args[0]
        if self.data.get(key) != owner:
            return 0
        if script == _LUA_REFRESH_IF_OWNER:
            self.ttls[key] = int(args[1])
            return 1
        if script == _LUA_DELETE_IF_OWNER:
            return self.delete(key)
        raise NotImplementedError(script)


# ============================================================================
# ADAPTER STUBS
# ============================================================================


class StubGateway:
    def __init__(self):
        self.created: List[tuple] = []
        self.sessions: Dict[str, List[CheckoutSession]] = {}
        self.fail_for: set = set()
        self.list_error: Optional[str] = None
        self.raise_on_create: Dict[str, BaseException] = {}
        self.raise_on_list: Dict[str, BaseException] = {}
        self.on_create: Optional[Callable] = None
        self._ids = count(1)

    async def create_link(self, client, amount_minor_units, description=None):
        if self.on_create:
            self.on_create(client)
        if client.id in self.raise_on_create:
            raise self.raise_on_create[client.id]
        if client.id in self.fail_for:
            raise GatewayError(f"Stripe API error (400): card declined for {client.id}")
        n = next(self._ids)
        self.created.append((client.id, amount_minor_units, description))
        return GatewayLink(id=f"plink_{n}", url=f"https://buy.stripe.com/test_{n}")

    async def list_sessions(self, link_id):
        if link_id in self.raise_on_list:
            raise self.raise_on_list[link_id]
        if self.list_error:
            raise GatewayError(self.list_error)
        return list(self.sessions.get(link_id, []))


class StubNotifier:
    def __init__(self):
        self.sent: List[tuple] = []
        self.fail_numbers: set = set()
        self.raise_for: Dict[str, BaseException] = {}

    async def send_sms(self, phone, message):
        if phone in self.raise_for:
            raise self.raise_for[phone]
        self.sent.append((phone, message))
        if phone in self.fail_numbers:
            return SmsOutcome(outcome="failed", error="Twilio error 21211")
        return SmsOutcome(outcome="sent", provider_message_id=f"SM{len(self.sent)}")


# ============================================================================
# FACTORIES
# ============================================================================


def make_client(client_id="c1", **overrides) -> Client:
    data = {
        "_id": client_id,
        "first_name": "Jane",
        "last_name": "Doe",
        "mobile_phone": "(443) 555-0100",
        "patient_balance": "100.00",
        "outstanding_balance": "0.00",
    }
    data.update(overrides)
    return Client.model_validate(data)


def make_link(store, client_id="c1", **overrides) -> PaymentLink:
    n = len(store.links) + 1
    data = {
        "_id": f"pl_{n:04d}",
        "client_id": client_id,
        "gateway_link_id": f"plink_seed_{n}",
        "url": f"https://buy.stripe.com/seed_{n}",
        "amount": "100.00",
    }
    data.update(overrides)
    return store.create_link(PaymentLink.model_validate(data))


def make_session(session_id="cs_1", link_id="plink_seed_1", client_id="c1", **overrides) -> CheckoutSession:
    data = {
        "id": session_id,
        "payment_status": "paid",
        "status": "complete",
        "amount_total": 10000,
        "created_at": datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        "link_id": link_id,
        "client_id": client_id,
    }
    data.update(overrides)
    return CheckoutSession(**data)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def store():
    return InMemoryLinkStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def progress(fake_redis):
    return ProgressStore(fake_redis, ttl=3600)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def notifier():
    return StubNotifier()


@pytest.fixture
def reconciler(store):
    return ReconciliationEngine(store)


@pytest.fixture
def service(store, gateway, notifier, reconciler):
    return PaymentLinkService(store, gateway, notifier, reconciler)


@pytest.fixture
def celery():
    mock = MagicMock()
    mock.send_task.return_value = MagicMock(id="fetch-task-1")
    return mock

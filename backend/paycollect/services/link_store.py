# services/link_store.py
import logging
import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set, TypeVar

from firebase_admin import firestore
from google.api_core.exceptions import AlreadyExists

from paycollect.core.errors import DuplicatePayment
from paycollect.models.client_model import Client
from paycollect.models.paylink_model import PaymentLink, utcnow
from paycollect.models.payment_model import PaymentRecord

logger = logging.getLogger("paycollect")

T = TypeVar("T")

CLIENTS = "clients"
PAYMENT_LINKS = "payment_links"
CLIENT_PAYMENTS = "client_payments"

# Firestore caps "in" filters at 30 values
IN_QUERY_CHUNK = 30


def new_link_id() -> str:
    """Time-prefixed so lexical order follows creation order."""
    return f"pl_{int(time.time() * 1000):013d}_{secrets.token_hex(3)}"


def to_document(data: dict) -> dict:
    """Decimals become 2 dp floats; Firestore has no decimal type."""
    out = {}
    for key, value in data.items():
        if isinstance(value, Decimal):
            value = float(round(value, 2))
        out[key] = value
    return out


def _chunks(items: List[str], size: int = IN_QUERY_CHUNK) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _client(doc) -> Optional[Client]:
    if not doc.exists:
        return None
    return Client.model_validate({**doc.to_dict(), "_id": doc.id})


def _link(doc) -> Optional[PaymentLink]:
    if not doc.exists:
        return None
    return PaymentLink.model_validate({**doc.to_dict(), "_id": doc.id})


def _payment(doc) -> Optional[PaymentRecord]:
    if not doc.exists:
        return None
    return PaymentRecord.model_validate({**doc.to_dict(), "_id": doc.id})


# --------------------------------------------------------------
# Transactional unit handed to reconciliation callbacks
# --------------------------------------------------------------
class FirestoreUnit:
    """
    Reads and writes bound to one Firestore transaction.
    Firestore requires every read to happen before the first write.
    """

    def __init__(self, db, transaction):
        self._db = db
        self._tx = transaction

    def get_client(self, client_id: str) -> Optional[Client]:
        ref = self._db.collection(CLIENTS).document(client_id)
        return _client(ref.get(transaction=self._tx))

    def get_link(self, link_id: str) -> Optional[PaymentLink]:
        ref = self._db.collection(PAYMENT_LINKS).document(link_id)
        return _link(ref.get(transaction=self._tx))

    def find_link_by_gateway_id(self, gateway_link_id: str) -> Optional[PaymentLink]:
        query = (
            self._db.collection(PAYMENT_LINKS)
            .where("gateway_link_id", "==", gateway_link_id)
            .limit(1)
        )
        for doc in query.stream(transaction=self._tx):
            return _link(doc)
        return None

    def get_payment(self, session_id: str) -> Optional[PaymentRecord]:
        ref = self._db.collection(CLIENT_PAYMENTS).document(session_id)
        return _payment(ref.get(transaction=self._tx))

    def create_payment(self, record: PaymentRecord) -> None:
        ref = self._db.collection(CLIENT_PAYMENTS).document(record.gateway_session_id)
        self._tx.create(ref, to_document(record.model_dump(exclude={"id"})))

    def update_client(self, client_id: str, fields: dict) -> None:
        ref = self._db.collection(CLIENTS).document(client_id)
        self._tx.update(ref, to_document({**fields, "updated_at": utcnow()}))

    def update_link(self, link_id: str, fields: dict) -> None:
        ref = self._db.collection(PAYMENT_LINKS).document(link_id)
        self._tx.update(ref, to_document({**fields, "updated_at": utcnow()}))


# --------------------------------------------------------------
# Store
# --------------------------------------------------------------
class FirestoreLinkStore:
    """Payment links, payment records and the client fields this service touches."""

    def __init__(self, db):
        self._db = db

    # ---------- clients ----------
    def get_client(self, client_id: str) -> Optional[Client]:
        return _client(self._db.collection(CLIENTS).document(str(client_id)).get())

    def get_clients(self, client_ids: Iterable[str]) -> List[Client]:
        refs = [self._db.collection(CLIENTS).document(str(cid)) for cid in client_ids]
        if not refs:
            return []
        clients = [_client(doc) for doc in self._db.get_all(refs)]
        return sorted((c for c in clients if c), key=lambda c: c.id)

    def eligible_client_ids(self, minimum: Decimal, client_ids: Optional[List[str]] = None) -> List[str]:
        """
        Clients with max(patient_balance, outstanding_balance) >= minimum and
        no pending link, in id order.
        """
        if client_ids is not None:
            clients: Dict[str, Client] = {c.id: c for c in self.get_clients(client_ids)}
        else:
            clients = {}
            for field in ("patient_balance", "outstanding_balance"):
                query = self._db.collection(CLIENTS).where(field, ">=", float(minimum))
                for doc in query.stream():
                    clients[doc.id] = _client(doc)

        pending = self.client_ids_with_pending_link(list(clients))
        return sorted(
            cid for cid, client in clients.items()
            if cid not in pending and client.has_chargeable_balance(minimum)
        )

    def client_ids_with_pending_link(self, client_ids: Optional[List[str]] = None) -> Set[str]:
        base = self._db.collection(PAYMENT_LINKS).where("payment_status", "==", "pending")
        if client_ids is None:
            return {doc.to_dict().get("client_id") for doc in base.stream()}

        found: Set[str] = set()
        for chunk in _chunks(list(client_ids)):
            for doc in base.where("client_id", "in", chunk).stream():
                found.add(doc.to_dict().get("client_id"))
        return found

    # ---------- payment links ----------
    def create_link(self, link: PaymentLink) -> PaymentLink:
        link_id = link.id or new_link_id()
        data = to_document(link.model_dump(exclude={"id"}))
        self._db.collection(PAYMENT_LINKS).document(link_id).set(data)
        return link.model_copy(update={"id": link_id})

    def get_link(self, link_id: str) -> Optional[PaymentLink]:
        return _link(self._db.collection(PAYMENT_LINKS).document(str(link_id)).get())

    def get_links(self, link_ids: Iterable[str]) -> List[PaymentLink]:
        refs = [self._db.collection(PAYMENT_LINKS).document(str(lid)) for lid in link_ids]
        if not refs:
            return []
        links = [_link(doc) for doc in self._db.get_all(refs)]
        return sorted((link for link in links if link), key=lambda link: link.id)

    def find_link_by_gateway_id(self, gateway_link_id: str) -> Optional[PaymentLink]:
        query = (
            self._db.collection(PAYMENT_LINKS)
            .where("gateway_link_id", "==", gateway_link_id)
            .limit(1)
        )
        for doc in query.stream():
            return _link(doc)
        return None

    def update_link(self, link_id: str, fields: dict) -> None:
        ref = self._db.collection(PAYMENT_LINKS).document(link_id)
        ref.update(to_document({**fields, "updated_at": utcnow()}))

    def delete_link(self, link_id: str) -> bool:
        ref = self._db.collection(PAYMENT_LINKS).document(link_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def list_links(
        self,
        payment_status: Optional[str] = None,
        sms_status: Optional[str] = None,
        limit: int = 25,
    ) -> List[PaymentLink]:
        query = self._db.collection(PAYMENT_LINKS)
        if payment_status:
            query = query.where("payment_status", "==", payment_status)
        if sms_status:
            query = query.where("sms_status", "==", sms_status)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit)
        return [_link(doc) for doc in query.stream()]

    def latest_pending_link(self, client_id: str) -> Optional[PaymentLink]:
        query = (
            self._db.collection(PAYMENT_LINKS)
            .where("client_id", "==", client_id)
            .where("payment_status", "==", "pending")
            .order_by("created_at", direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        for doc in query.stream():
            return _link(doc)
        return None

    def pending_links_with_gateway_id(self) -> List[PaymentLink]:
        query = self._db.collection(PAYMENT_LINKS).where("payment_status", "==", "pending")
        links = [_link(doc) for doc in query.stream()]
        return sorted((link for link in links if link.gateway_link_id), key=lambda link: link.id)

    def unsent_link_ids(self, limit: Optional[int] = None) -> List[str]:
        query = (
            self._db.collection(PAYMENT_LINKS)
            .where("payment_status", "==", "pending")
            .where("sms_status", "==", "not_sent")
        )
        ids = sorted(doc.id for doc in query.stream())
        return ids[:limit] if limit is not None else ids

    def paid_links_since(self, since: datetime) -> List[PaymentLink]:
        query = (
            self._db.collection(PAYMENT_LINKS)
            .where("payment_status", "==", "paid")
            .where("paid_at", ">=", since)
        )
        return [_link(doc) for doc in query.stream()]

    def recent_paid(self, limit: int = 5) -> List[PaymentLink]:
        query = (
            self._db.collection(PAYMENT_LINKS)
            .where("payment_status", "==", "paid")
            .order_by("paid_at", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [_link(doc) for doc in query.stream()]

    # ---------- payment records ----------
    def get_payment(self, session_id: str) -> Optional[PaymentRecord]:
        return _payment(self._db.collection(CLIENT_PAYMENTS).document(session_id).get())

    # ---------- transactions ----------
    def transaction(self, fn: Callable[[FirestoreUnit], T]) -> T:
        """
        Run fn inside one Firestore transaction. Firestore may call fn more
        than once on contention, so fn must only touch state through the unit.
        A create() colliding on an existing session id surfaces as DuplicatePayment.
        """
        @firestore.transactional
        def _run(transaction):
            return fn(FirestoreUnit(self._db, transaction))

        try:
            return _run(self._db.transaction())
        except AlreadyExists:
            raise DuplicatePayment("checkout session already recorded")

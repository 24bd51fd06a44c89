# services/reconciliation.py
"""
Idempotent payment confirmation shared by the webhook and the status poll.

A checkout session is credited at most once. The store's uniqueness on the
session id decides that; the pre-read here only saves a transaction in the
common duplicate case. Recording the payment, reducing the balance, flipping
the account to `paid` and flipping the link to `paid` commit together.
"""
import logging
from typing import Optional

from paycollect.core.errors import DuplicatePayment
from paycollect.models.client_model import Client
from paycollect.models.paylink_model import PaymentLink, utcnow
from paycollect.models.payment_model import CheckoutSession, PaymentRecord
from paycollect.utils.money import ZERO, from_minor_units

logger = logging.getLogger("paycollect")


def apply_payment(client: Client, amount) -> dict:
    """
    Balance fields to write after a payment: patient balance first if it is
    positive, otherwise outstanding balance, floored at zero. The account
    flips to `paid` once both balances are cleared.
    """
    patient = client.patient_balance
    outstanding = client.outstanding_balance

    if patient > 0:
        patient = max(ZERO, patient - amount)
        fields = {"patient_balance": patient}
    else:
        outstanding = max(ZERO, outstanding - amount)
        fields = {"outstanding_balance": outstanding}

    if patient <= 0 and outstanding <= 0:
        fields["account_status"] = "paid"
    return fields


class ReconciliationEngine:

    def __init__(self, store):
        self._store = store

    def mark_paid(self, gateway_link_id: Optional[str]) -> bool:
        """Flip a pending link to paid. No-op when already paid or unknown."""
        if not gateway_link_id:
            return False

        def _flip(unit) -> bool:
            link = unit.find_link_by_gateway_id(gateway_link_id)
            if not link or link.payment_status != "pending":
                return False
            unit.update_link(link.id, {"payment_status": "paid", "paid_at": utcnow()})
            return True

        flipped = self._store.transaction(_flip)
        if flipped:
            logger.info(f"Payment link {gateway_link_id} marked paid")
        return flipped

    def mark_expired(self, link_id: str) -> bool:
        """pending → expired only; a link that got paid meanwhile stays paid."""
        def _expire(unit) -> bool:
            link = unit.get_link(link_id)
            if not link or link.payment_status != "pending":
                return False
            unit.update_link(link.id, {"payment_status": "expired"})
            return True

        return self._store.transaction(_expire)

    def record_payment(self, session: CheckoutSession, link: Optional[PaymentLink] = None) -> bool:
        """
        Credit a paid checkout session. Returns True only for the delivery
        that actually recorded it; duplicates (from either channel) return False.
        """
        if self._store.get_payment(session.id):
            logger.info(f"Session {session.id} already recorded, skipping")
            self.mark_paid(session.link_id)
            return False

        try:
            return self._store.transaction(lambda unit: self._apply(unit, session, link))
        except DuplicatePayment:
            logger.info(f"Session {session.id} recorded concurrently, treating as done")
            return False

    def _apply(self, unit, session: CheckoutSession, known_link: Optional[PaymentLink]) -> bool:
        # Reads first
        if unit.get_payment(session.id):
            raise DuplicatePayment(session.id)

        link = None
        if session.link_id:
            link = unit.find_link_by_gateway_id(session.link_id)
        elif known_link is not None:
            link = unit.get_link(known_link.id)

        client_id = session.client_id or (link.client_id if link else None)
        client = unit.get_client(client_id) if client_id else None

        # Writes
        if link and link.payment_status == "pending":
            unit.update_link(link.id, {"payment_status": "paid", "paid_at": utcnow()})

        if client is None:
            logger.warning(f"Session {session.id} has no resolvable client; link updated, nothing credited")
            return False

        amount = from_minor_units(session.amount_total)
        unit.create_payment(PaymentRecord(
            client_id=client.id,
            amount_paid=amount,
            gateway_session_id=session.id,
            gateway_link_id=session.link_id or (link.gateway_link_id if link else None),
            paid_at=session.created_at,
        ))

        fields = apply_payment(client, amount)
        unit.update_client(client.id, fields)

        if fields.get("account_status") == "paid":
            logger.info(f"Client {client.id} balance fully cleared, status set to 'paid'")
        logger.info(f"Recorded payment of {amount} for client {client.id} (session {session.id})")
        return True

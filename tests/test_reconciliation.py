"""
Tests for payment reconciliation.

Covers the balance arithmetic and the at-most-once crediting of a checkout
session, whichever channel delivers it first.
"""
import threading
from decimal import Decimal

from conftest import make_client, make_link, make_session
from paycollect.services.reconciliation import apply_payment


class TestApplyPayment:

    def test_patient_balance_is_reduced_first(self):
        client = make_client(patient_balance="80.00", outstanding_balance="50.00")
        assert apply_payment(client, Decimal("30.00")) == {"patient_balance": Decimal("50.00")}

    def test_outstanding_used_when_patient_balance_is_zero(self):
        client = make_client(patient_balance="0.00", outstanding_balance="50.00")
        assert apply_payment(client, Decimal("20.00")) == {"outstanding_balance": Decimal("30.00")}

    def test_overpayment_floors_at_zero_and_flips_status(self):
        client = make_client(patient_balance="40.00", outstanding_balance="0.00")
        fields = apply_payment(client, Decimal("100.00"))
        assert fields == {"patient_balance": Decimal("0.00"), "account_status": "paid"}

    def test_status_stays_when_other_balance_remains(self):
        client = make_client(patient_balance="40.00", outstanding_balance="10.00")
        fields = apply_payment(client, Decimal("40.00"))
        assert "account_status" not in fields


class TestRecordPayment:

    def test_paid_session_credits_client_and_flips_link(self, store, reconciler):
        store.add_client(make_client())
        link = make_link(store)

        assert reconciler.record_payment(make_session()) is True

        client = store.get_client("c1")
        assert client.patient_balance == Decimal("0.00")
        assert client.account_status == "paid"
        assert store.get_link(link.id).payment_status == "paid"
        assert store.get_link(link.id).paid_at is not None

        record = store.get_payment("cs_1")
        assert record.amount_paid == Decimal("100.00")
        assert record.client_id == "c1"
        assert record.gateway_link_id == "plink_seed_1"

    def test_duplicate_delivery_is_a_no_op(self, store, reconciler):
        store.add_client(make_client(patient_balance="150.00"))
        make_link(store)

        assert reconciler.record_payment(make_session()) is True
        assert reconciler.record_payment(make_session()) is False

        assert store.get_client("c1").patient_balance == Decimal("50.00")
        assert len(store.payments) == 1

    def test_concurrent_deliveries_credit_once(self, store, reconciler):
        store.add_client(make_client(patient_balance="500.00"))
        make_link(store)
        results = []

        def deliver():
            results.append(reconciler.record_payment(make_session()))

        threads = [threading.Thread(target=deliver) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert store.get_client("c1").patient_balance == Decimal("400.00")
        assert len(store.payments) == 1

    def test_client_falls_back_to_link_owner(self, store, reconciler):
        store.add_client(make_client())
        make_link(store)

        assert reconciler.record_payment(make_session(client_id=None)) is True
        assert store.get_client("c1").patient_balance == Decimal("0.00")

    def test_unknown_client_flips_link_only(self, store, reconciler):
        link = make_link(store, client_id="ghost")

        assert reconciler.record_payment(make_session(client_id=None)) is False
        assert store.get_link(link.id).payment_status == "paid"
        assert store.payments == {}

    def test_paid_link_is_not_touched_again(self, store, reconciler):
        store.add_client(make_client())
        link = make_link(store, payment_status="paid")
        before = store.get_link(link.id).paid_at

        reconciler.record_payment(make_session())
        assert store.get_link(link.id).paid_at == before


class TestLinkFlips:

    def test_mark_paid_only_from_pending(self, store, reconciler):
        make_link(store, payment_status="expired")
        assert reconciler.mark_paid("plink_seed_1") is False
        assert reconciler.mark_paid("plink_unknown") is False
        assert reconciler.mark_paid(None) is False

    def test_mark_expired_never_downgrades_paid(self, store, reconciler):
        link = make_link(store, payment_status="paid")
        assert reconciler.mark_expired(link.id) is False
        assert store.get_link(link.id).payment_status == "paid"

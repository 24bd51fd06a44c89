"""
HTTP tests for the API routers.

Dependencies are swapped through app.dependency_overrides so no Firestore,
Redis, Stripe or Twilio is touched.
"""
import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import make_client, make_link
from main import app
from paycollect.core import deps
from paycollect.services.stripe_gateway import StripeGateway
from paycollect.tasks.orchestrator import JobOrchestrator

WEBHOOK_SECRET = "whsec_api"


@pytest.fixture
def client(store, progress, service, reconciler, celery):
    app.dependency_overrides[deps.get_link_store] = lambda: store
    app.dependency_overrides[deps.get_progress_store] = lambda: progress
    app.dependency_overrides[deps.get_paylink_service] = lambda: service
    app.dependency_overrides[deps.get_reconciler] = lambda: reconciler
    app.dependency_overrides[deps.get_gateway] = lambda: StripeGateway(
        secret_key="sk_test", webhook_secret=WEBHOOK_SECRET
    )
    app.dependency_overrides[deps.get_orchestrator] = lambda: JobOrchestrator(store, progress, celery=celery)
    yield TestClient(app)
    app.dependency_overrides.clear()


def signed(payload):
    body = json.dumps(payload).encode()
    ts = int(time.time())
    digest = hmac.new(WEBHOOK_SECRET.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return body, {"Stripe-Signature": f"t={ts},v1={digest}", "Content-Type": "application/json"}


def checkout_completed(payment_status="paid"):
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_1",
            "payment_status": payment_status,
            "status": "complete",
            "amount_total": 10000,
            "created": 1760000000,
            "payment_link": "plink_seed_1",
            "metadata": {"client_id": "c1"},
        }},
    }


# ============================================================================
# WEBHOOK
# ============================================================================


class TestStripeWebhook:

    def test_duplicate_delivery_credits_once(self, client, store):
        store.add_client(make_client(patient_balance="150.00"))
        link = make_link(store)
        body, headers = signed(checkout_completed())

        first = client.post("/api/webhooks/stripe", content=body, headers=headers)
        second = client.post("/api/webhooks/stripe", content=body, headers=headers)

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json() == {"received": True}
        assert store.get_client("c1").patient_balance == Decimal("50.00")
        assert store.get_link(link.id).payment_status == "paid"
        assert len(store.payments) == 1

    def test_bad_signature_touches_nothing(self, client, store):
        store.add_client(make_client())
        link = make_link(store)
        body, headers = signed(checkout_completed())
        headers["Stripe-Signature"] = headers["Stripe-Signature"][:-4] + "zzzz"

        response = client.post("/api/webhooks/stripe", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature"}
        assert store.get_link(link.id).payment_status == "pending"
        assert store.payments == {}

    def test_unpaid_completion_is_acknowledged_only(self, client, store):
        store.add_client(make_client())
        make_link(store)
        body, headers = signed(checkout_completed(payment_status="unpaid"))

        response = client.post("/api/webhooks/stripe", content=body, headers=headers)

        assert response.status_code == 200
        assert store.payments == {}

    def test_other_event_types_are_acknowledged(self, client):
        body, headers = signed({"id": "evt_2", "type": "customer.created", "data": {"object": {}}})
        response = client.post("/api/webhooks/stripe", content=body, headers=headers)
        assert response.json() == {"received": True}

    @pytest.mark.parametrize("payload", [
        {"id": "evt_3", "type": "checkout.session.completed", "data": {"object": {"payment_status": "paid"}}},
        [{"id": "evt_4", "type": "checkout.session.completed"}],
    ])
    def test_signed_but_malformed_event_is_acknowledged(self, client, store, payload):
        store.add_client(make_client())
        link = make_link(store)
        body, headers = signed(payload)

        response = client.post("/api/webhooks/stripe", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert store.get_link(link.id).payment_status == "pending"
        assert store.payments == {}


# ============================================================================
# PAYMENT LINKS
# ============================================================================


class TestPaymentLinkRoutes:

    def test_create_link(self, client, store):
        store.add_client(make_client())

        response = client.post("/api/clients/c1/payment-links", json={"amount": 42.5})

        assert response.status_code == 201
        body = response.json()
        assert body["payment_status"] == "pending"
        assert body["sms_status"] == "not_sent"
        assert Decimal(body["amount"]) == Decimal("42.50")

    def test_create_link_validation(self, client, store):
        store.add_client(make_client())
        response = client.post("/api/clients/c1/payment-links", json={"amount": 0})
        assert response.status_code == 422

    def test_create_link_unknown_client(self, client):
        response = client.post("/api/clients/ghost/payment-links", json={"amount": 10})
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_send_sms_failure_is_502(self, client, store):
        store.add_client(make_client(mobile_phone=None))
        link = make_link(store)

        response = client.post(f"/api/payment-links/{link.id}/send-sms")

        assert response.status_code == 502
        assert response.json()["message"] == "Client has no phone number"
        assert store.get_link(link.id).sms_status == "failed"

    def test_list_includes_batch_context(self, client, store):
        make_link(store)
        make_link(store, sms_status="sent")

        body = client.get("/api/payment-links/").json()

        assert len(body["links"]) == 2
        assert body["unsent_count"] == 1
        assert body["sending"] is None

    def test_delete(self, client, store):
        link = make_link(store)
        assert client.delete(f"/api/payment-links/{link.id}").status_code == 200
        assert client.delete(f"/api/payment-links/{link.id}").status_code == 404


# ============================================================================
# JOBS & PROGRESS
# ============================================================================


class TestJobRoutes:

    def test_generate_then_progress_then_lease_conflict(self, client, store, celery):
        store.add_client(make_client())

        accepted = client.post("/api/clients/payment-links/generate")
        progress = client.get("/api/progress/payment_links_generating").json()
        conflict = client.post("/api/clients/payment-links/generate", json={"client_ids": ["c1"]})

        assert accepted.status_code == 202
        assert accepted.json()["queued"] == 1
        assert progress["progress"]["total"] == 1
        assert progress["progress"]["processed"] == 0
        assert conflict.status_code == 409

    def test_cancel(self, client, store):
        store.add_client(make_client())
        client.post("/api/clients/payment-links/generate")

        response = client.post("/api/clients/payment-links/cancel")

        assert response.json()["cancelled"] == 1
        assert client.get("/api/progress/payment_links_generating").json()["progress"] is None

    def test_batch_sms_rejects_oversized_body(self, client):
        response = client.post("/api/payment-links/batch-sms", json={"link_ids": [f"pl_{n}" for n in range(161)]})
        assert response.status_code == 422

    def test_unknown_progress_key(self, client):
        response = client.get("/api/progress/reindexing")
        assert response.status_code == 404

# services/stripe_gateway.py
import json
import logging
from typing import List, Optional

import httpx
import stripe
from pydantic import BaseModel

from paycollect.core.config import settings
from paycollect.core.errors import GatewayError, SignatureError
from paycollect.models.client_model import Client
from paycollect.models.payment_model import (
    CheckoutSession,
    CheckoutSessionCompleted,
    UnhandledEvent,
    WebhookEvent,
)

logger = logging.getLogger("paycollect")

SESSION_COMPLETED = "checkout.session.completed"


class GatewayLink(BaseModel):
    id: str
    url: str


def _stripe_error(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message") or response.text
    except ValueError:
        return response.text


class StripeGateway:
    """
    Stripe Payment Links over the REST API.
    One short-lived AsyncClient per call; pass `transport` to stub the network.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        currency: Optional[str] = None,
        tolerance: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.currency = currency or settings.PAYMENT_CURRENCY
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {self.secret_key}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.secret_key:
            raise GatewayError("Stripe secret key not configured (STRIPE_SECRET_KEY)")

        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[Stripe] {method} {path} transport error: {e}")
            raise GatewayError(f"Stripe request failed: {e}")

        if response.status_code >= 400:
            message = _stripe_error(response)
            logger.error(f"[Stripe] {method} {path} → {response.status_code} | {message}")
            raise GatewayError(f"Stripe API error ({response.status_code}): {message}")

        return response.json()

    # --------------------------------------------------------------
    # Links
    # --------------------------------------------------------------
    async def create_link(
        self, client: Client, amount_minor_units: int, description: Optional[str] = None
    ) -> GatewayLink:
        """Mint a one-line-item Payment Link (price first, then link)."""
        product_name = description or f"Balance for {client.display_name}"

        price = await self._request("POST", "/prices", data={
            "currency": self.currency,
            "unit_amount": amount_minor_units,
            "product_data[name]": product_name,
        })

        link = await self._request("POST", "/payment_links", data={
            "line_items[0][price]": price["id"],
            "line_items[0][quantity]": 1,
            "metadata[client_id]": client.id,
        })

        logger.info(f"[Stripe] Payment link {link['id']} created for client {client.id} ({amount_minor_units} minor units)")
        return GatewayLink(id=link["id"], url=link["url"])

    async def list_sessions(self, link_id: str) -> List[CheckoutSession]:
        """Every checkout session started against a payment link, following pagination."""
        sessions: List[CheckoutSession] = []
        params = {"payment_link": link_id, "limit": 100}

        while True:
            page = await self._request("GET", "/checkout/sessions", params=params)
            data = page.get("data") or []
            sessions.extend(CheckoutSession.from_stripe(obj) for obj in data)
            if not page.get("has_more") or not data:
                break
            params = {**params, "starting_after": data[-1]["id"]}

        return sessions

    # --------------------------------------------------------------
    # Webhooks
    # --------------------------------------------------------------
    def verify_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookEvent:
        """
        Check the Stripe-Signature header, then decode the event once.
        Header format: t=<unix>,v1=<hex>[,v1=<hex>...]
        """
        if not self.webhook_secret:
            raise SignatureError("Webhook secret not configured")
        if not signature_header:
            raise SignatureError("Missing signature header")

        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"), signature_header, self.webhook_secret, tolerance=self.tolerance or None
            )
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise SignatureError(f"Signature rejected: {e}")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.warning("[Stripe] Signed webhook body is not valid JSON, ignoring")
            return UnhandledEvent(kind="", event_id="")

        return parse_event(payload)


def parse_event(payload) -> WebhookEvent:
    """
    Map a verified payload onto the event union. A body that is signed but
    cannot be decoded comes back as UnhandledEvent so it is acknowledged,
    not retried by Stripe forever.
    """
    if not isinstance(payload, dict):
        logger.warning(f"[Stripe] Webhook payload is a {type(payload).__name__}, not an object, ignoring")
        return UnhandledEvent(kind="", event_id="")

    kind = str(payload.get("type") or "")
    event_id = str(payload.get("id") or "")
    if kind != SESSION_COMPLETED:
        return UnhandledEvent(kind=kind, event_id=event_id)

    try:
        obj = payload["data"]["object"]
        return CheckoutSessionCompleted(event_id=event_id, session=CheckoutSession.from_stripe(obj))
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"[Stripe] Undecodable {kind} event {event_id or '?'}: {e!r}")
        return UnhandledEvent(kind=kind, event_id=event_id)

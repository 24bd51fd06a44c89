# services/paylink_service.py
import logging
from datetime import datetime, timezone
from typing import Optional

from paycollect.core.config import settings
from paycollect.core.errors import GatewayError, NotFound, NotifyError, ValidationError
from paycollect.models.client_model import Client
from paycollect.models.paylink_model import FetchStatusResult, PaymentLink, utcnow
from paycollect.services.channels import SmsOutcome
from paycollect.services.reconciliation import ReconciliationEngine
from paycollect.utils.money import ZERO, format_amount, to_minor_units, to_money
from paycollect.utils.phone import is_dialable, normalize_phone, resolve_phone
from paycollect.utils.sms_templates import render_sms

logger = logging.getLogger("paycollect")


class PaymentLinkService:
    """Create, text, poll and delete payment links for client balances."""

    def __init__(self, store, gateway, notifier, reconciler: Optional[ReconciliationEngine] = None):
        self._links = store
        self._gateway = gateway
        self._notifier = notifier
        self._reconciler = reconciler or ReconciliationEngine(store)

    @property
    def reconciler(self) -> ReconciliationEngine:
        return self._reconciler

    # --------------------------------------------------------------
    # Create
    # --------------------------------------------------------------
    async def store(self, client: Client, amount, description: Optional[str] = None) -> PaymentLink:
        amount = to_money(amount)
        if amount < settings.MIN_LINK_AMOUNT:
            raise ValidationError(f"Amount must be at least {settings.MIN_LINK_AMOUNT}")
        if description is not None and len(description) > 255:
            raise ValidationError("Description must be 255 characters or fewer")

        gateway_link = await self._gateway.create_link(client, to_minor_units(amount), description)

        link = self._links.create_link(PaymentLink(
            client_id=client.id,
            gateway_link_id=gateway_link.id,
            url=gateway_link.url,
            amount=amount,
            description=description,
            payment_status="pending",
            sms_status="not_sent",
        ))
        logger.info(f"Payment link {link.id} created for client {client.id} | amount={amount}")
        return link

    async def link_for_client(self, client: Client) -> PaymentLink:
        """Most recent pending link, or a fresh one for the current balance."""
        link = self._links.latest_pending_link(client.id)
        if link:
            return link

        amount = client.link_amount()
        if amount < settings.MIN_ELIGIBLE_BALANCE:
            raise ValidationError("No payment link available for this client.")
        return await self.store(client, amount)

    # --------------------------------------------------------------
    # SMS
    # --------------------------------------------------------------
    def compose_sms(self, client: Client, link: PaymentLink) -> str:
        return render_sms(
            "balance_due",
            clinic=settings.CLINIC_NAME,
            first_name=client.greeting_name,
            amount=format_amount(link.amount),
            link=link.url,
            clinic_phone=settings.CLINIC_PHONE,
        )

    async def send_sms(self, link: PaymentLink) -> SmsOutcome:
        """
        Text the link to the client's best number and record the outcome on
        the link. Provider failures are recorded, not raised.
        """
        client = self._links.get_client(link.client_id)
        if client is None:
            raise NotFound(f"Client {link.client_id} not found")

        phone = resolve_phone(client)
        if not phone:
            outcome = SmsOutcome(outcome="failed", error="Client has no phone number")
        else:
            e164 = normalize_phone(phone)
            if not is_dialable(e164):
                outcome = SmsOutcome(outcome="failed", error=f"Cannot normalize phone number {phone!r}")
            else:
                outcome = await self._notifier.send_sms(e164, self.compose_sms(client, link))

        self._links.update_link(link.id, {
            "sms_status": "sent" if outcome.sent else "failed",
            "sms_sent_at": utcnow(),
        })

        if not outcome.sent:
            logger.warning(f"SMS failed for payment link {link.id}: {outcome.error or 'unknown error'}")
        return outcome

    async def send_to_phone(self, client: Client, phone: str) -> PaymentLink:
        """Send the client's link to a number typed in by staff."""
        link = await self.link_for_client(client)
        outcome = await self._notify_outstanding(client, link, phone)
        if not outcome.sent:
            raise NotifyError(outcome.error or "SMS send failed")
        return link

    async def send_to_client(self, client_id: str, phone: Optional[str] = None) -> SmsOutcome:
        """Per-client job body: find or mint a link, then text it."""
        client = self._links.get_client(client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found")

        phone = phone or resolve_phone(client)
        if not phone:
            raise ValidationError(f"Client {client_id} has no phone number")

        link = await self.link_for_client(client)
        outcome = await self._notify_outstanding(client, link, phone)
        if not outcome.sent:
            logger.warning(f"SMS failed for client {client_id}: {outcome.error}")
        return outcome

    async def _notify_outstanding(self, client: Client, link: PaymentLink, phone: str) -> SmsOutcome:
        name = client.display_name if (client.name or client.first_name or client.last_name) else "there"
        body = render_sms("outstanding", name=name, amount=format_amount(link.amount), link=link.url)
        e164 = normalize_phone(phone)
        if not is_dialable(e164):
            return SmsOutcome(outcome="failed", error=f"Cannot normalize phone number {phone!r}")
        return await self._notifier.send_sms(e164, body)

    # --------------------------------------------------------------
    # Status
    # --------------------------------------------------------------
    async def fetch_status(self, link: PaymentLink) -> FetchStatusResult:
        """
        Poll the gateway for the link's checkout sessions and sync locally.
        A paid session wins over an expired one; gateway errors change nothing.
        """
        if not link.gateway_link_id:
            return FetchStatusResult(status="skipped", message="No Stripe payment link ID.")

        if link.payment_status == "paid":
            return FetchStatusResult(status="paid", message="Already marked as paid.")

        if link.payment_status == "expired":
            return FetchStatusResult(status="expired", message="Payment link has expired.")

        try:
            sessions = await self._gateway.list_sessions(link.gateway_link_id)
        except GatewayError as e:
            logger.error(f"fetch_status: Stripe API error for link {link.id}: {e.message}")
            return FetchStatusResult(status="error", message=f"Stripe API error: {e.message}")

        paid = next((s for s in sessions if s.payment_status == "paid"), None)
        if paid is not None:
            self._reconciler.record_payment(paid, link=link)
            self._reconciler.mark_paid(link.gateway_link_id)
            return FetchStatusResult(status="paid", message="Payment confirmed and marked as paid.")

        if any(s.status == "expired" for s in sessions):
            self._reconciler.mark_expired(link.id)
            return FetchStatusResult(status="expired", message="Payment link has expired.")

        return FetchStatusResult(status="pending", message="No completed payment found.")

    # --------------------------------------------------------------
    # Delete / dashboard
    # --------------------------------------------------------------
    def destroy(self, link: PaymentLink) -> bool:
        """Remove the link row. Balances are left as they are."""
        deleted = self._links.delete_link(link.id)
        if deleted:
            logger.info(f"Payment link {link.id} deleted")
        return deleted

    def dashboard_stats(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        pending = self._links.list_links(payment_status="pending", limit=10_000)
        paid_this_month = self._links.paid_links_since(month_start)

        return {
            "total_outstanding": sum((link.amount for link in pending), ZERO),
            "total_paid_this_month": sum((link.amount for link in paid_this_month), ZERO),
            "recent_paid": self._links.recent_paid(5),
            "pending_count": len(pending),
        }

    def get_link_or_404(self, link_id: str) -> PaymentLink:
        link = self._links.get_link(link_id)
        if link is None:
            raise NotFound(f"Payment link {link_id} not found")
        return link

    def get_client_or_404(self, client_id: str) -> Client:
        client = self._links.get_client(client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found")
        return client

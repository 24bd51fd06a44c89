# models/payment_model.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paycollect.utils.money import to_money


class PaymentRecord(BaseModel):
    """
    One confirmed payment. The document id is the gateway session id,
    so a second insert for the same session is rejected by the store.
    """
    id: Optional[str] = Field(None, alias="_id")
    client_id: str
    amount_paid: Decimal
    gateway_session_id: str
    gateway_link_id: Optional[str] = None
    paid_at: datetime

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("amount_paid", mode="before")
    @classmethod
    def _money(cls, v):
        return to_money(v)


class CheckoutSession(BaseModel):
    """The slice of a Stripe checkout session this service acts on."""
    id: str
    payment_status: str             # paid | unpaid | no_payment_required
    status: Optional[str] = None    # open | complete | expired
    amount_total: int = 0           # minor units
    created_at: datetime
    link_id: Optional[str] = None
    client_id: Optional[str] = None  # from session metadata

    @classmethod
    def from_stripe(cls, obj: dict) -> "CheckoutSession":
        link = obj.get("payment_link")
        if isinstance(link, dict):
            link = link.get("id")
        metadata = obj.get("metadata") or {}
        client_id = metadata.get("client_id")
        return cls(
            id=obj["id"],
            payment_status=obj.get("payment_status") or "unpaid",
            status=obj.get("status"),
            amount_total=obj.get("amount_total") or 0,
            created_at=datetime.fromtimestamp(obj.get("created") or 0, tz=timezone.utc),
            link_id=link,
            client_id=str(client_id) if client_id not in (None, "") else None,
        )


# ---------------------------------------------------------------
# Webhook events, decoded once at the HTTP boundary
# ---------------------------------------------------------------
class CheckoutSessionCompleted(BaseModel):
    kind: Literal["checkout.session.completed"] = "checkout.session.completed"
    event_id: str
    session: CheckoutSession


class UnhandledEvent(BaseModel):
    kind: str
    event_id: str


WebhookEvent = Union[CheckoutSessionCompleted, UnhandledEvent]

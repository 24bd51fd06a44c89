# models/paylink_model.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paycollect.utils.money import to_money

PaymentStatus = Literal["pending", "paid", "failed", "expired"]
SmsStatus = Literal["not_sent", "sent", "failed"]
FetchOutcome = Literal["paid", "expired", "pending", "skipped", "error"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentLink(BaseModel):
    """One hosted checkout link minted for a client balance."""
    id: str = Field("", alias="_id")
    client_id: str

    gateway_link_id: Optional[str] = None   # Stripe plink_..., unique
    url: Optional[str] = None
    amount: Decimal
    description: Optional[str] = None

    payment_status: PaymentStatus = "pending"
    sms_status: SmsStatus = "not_sent"
    sms_sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("amount", mode="before")
    @classmethod
    def _money(cls, v):
        return to_money(v)

    @property
    def is_sms_eligible(self) -> bool:
        return self.payment_status == "pending" and self.sms_status == "not_sent"


class PaymentLinkCreate(BaseModel):
    """Payload when staff mint a link from the client page."""
    amount: Decimal = Field(..., ge=Decimal("0.01"), decimal_places=2)
    description: Optional[str] = Field(None, max_length=255)


class FetchStatusResult(BaseModel):
    status: FetchOutcome
    message: str


class BatchSmsRequest(BaseModel):
    link_ids: List[str] = Field(..., min_length=1, max_length=160)


class GenerateLinksRequest(BaseModel):
    # Empty/None means "every eligible client"
    client_ids: Optional[List[str]] = None


class ClientBatchSmsRequest(BaseModel):
    client_ids: List[str] = Field(..., min_length=1)


class SendToPhoneRequest(BaseModel):
    phone: str = Field(..., pattern=r"^\+?[\d\s\-().]{7,20}$")

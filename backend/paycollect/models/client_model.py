# models/client_model.py
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paycollect.utils.money import ZERO, to_money

AccountStatus = Literal["active", "inactive", "pending", "paid"]


class Client(BaseModel):
    """
    Patient account as written by the demographic importer.
    Only the fields the collection flow reads are modelled; the rest of the
    document passes through untouched.
    """
    id: str = Field(..., alias="_id")

    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    # Phone breakdown from the importer
    mobile_phone: Optional[str] = None
    phone: Optional[str] = None          # landline / primary
    work_phone: Optional[str] = None

    patient_balance: Decimal = ZERO
    outstanding_balance: Decimal = ZERO
    account_status: AccountStatus = "active"

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("patient_balance", "outstanding_balance", mode="before")
    @classmethod
    def _money(cls, v):
        return to_money(v)

    @property
    def display_name(self) -> str:
        full = (self.name or f"{self.first_name or ''} {self.last_name or ''}").strip()
        return full or f"Patient #{self.id}"

    @property
    def greeting_name(self) -> str:
        return (self.first_name or "").strip() or (self.name or "").strip() or f"Patient #{self.id}"

    def link_amount(self) -> Decimal:
        """What a generated link should charge: patient balance first, else outstanding."""
        return self.patient_balance if self.patient_balance > 0 else self.outstanding_balance

    def has_chargeable_balance(self, minimum: Decimal) -> bool:
        return max(self.patient_balance, self.outstanding_balance) >= minimum

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..timeutils import now_utc
from .base import DBSerializableModel
from .user import UserAccount


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class BillingStatus(str, Enum):
    ACTIVE = "active"


class PaymentStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"


class CreditPool(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"


class PurchaseRecord(BaseModel):
    """
    One credit pack purchase, embedded in the billing record's history.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    pool: CreditPool
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    purchased_at: datetime
    project_id: Optional[str] = None
    project_name: Optional[str] = None

    @field_serializer("unit_price", "total_price")
    def _serialize_money(self, value: Decimal) -> str:
        return str(value)


class BillingRecord(DBSerializableModel):
    """
    The single billing row a user owns: plan, cycle, add-ons and the two
    consumable credit ledgers.

    `version` is bumped by the DB manager on every successful write and is
    the compare-and-swap token for concurrent read-modify-write.
    """

    collection_name: ClassVar[str] = "billing"
    unique_fields: ClassVar[tuple[str, ...]] = ("user_id",)

    id: Optional[str] = Field(default=None)
    user_id: str
    selected_plan: str
    billing_cycle: BillingCycle
    plan_price: Decimal = Field(ge=0)
    add_ons: set[str] = Field(default_factory=set)
    subscription_start_date: datetime
    subscription_end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    status: BillingStatus = BillingStatus.ACTIVE
    payment_status: PaymentStatus
    image_credits: int = Field(default=0, ge=0)
    document_credits: int = Field(default=0, ge=0)
    total_image_purchases: int = Field(default=0, ge=0)
    total_document_purchases: int = Field(default=0, ge=0)
    image_purchase_history: list[PurchaseRecord] = Field(default_factory=list)
    document_purchase_history: list[PurchaseRecord] = Field(default_factory=list)
    discount_code: Optional[str] = None
    discount_percentage: Optional[Decimal] = None
    version: int = 0
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @field_serializer("add_ons")
    def _serialize_add_ons(self, value: set[str]) -> list[str]:
        # Stored as a list; order carries no meaning
        return sorted(value)

    @field_serializer("plan_price", "discount_percentage")
    def _serialize_money(self, value: Optional[Decimal]) -> Optional[str]:
        return None if value is None else str(value)

    def credits(self, pool: CreditPool) -> int:
        return getattr(self, _POOL_FIELDS[pool][0])

    def total_purchases(self, pool: CreditPool) -> int:
        return getattr(self, _POOL_FIELDS[pool][1])

    def purchase_history(self, pool: CreditPool) -> list[PurchaseRecord]:
        return getattr(self, _POOL_FIELDS[pool][2])

    def with_purchase(self, purchase: PurchaseRecord) -> "BillingRecord":
        balance_field, counter_field, history_field = _POOL_FIELDS[purchase.pool]
        return self.model_copy(
            update={
                balance_field: self.credits(purchase.pool) + purchase.quantity,
                counter_field: self.total_purchases(purchase.pool) + 1,
                history_field: [*self.purchase_history(purchase.pool), purchase],
            }
        )


_POOL_FIELDS: dict[CreditPool, tuple[str, str, str]] = {
    CreditPool.IMAGE: (
        "image_credits",
        "total_image_purchases",
        "image_purchase_history",
    ),
    CreditPool.DOCUMENT: (
        "document_credits",
        "total_document_purchases",
        "document_purchase_history",
    ),
}


class UserWithBilling(BaseModel):
    user: UserAccount
    billing: Optional[BillingRecord] = None


class CreditPurchaseResult(BaseModel):
    pool: CreditPool
    balance: int
    total_purchases: int
    purchase: PurchaseRecord

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .billing import BillingRecord, CreditPurchaseResult, UserWithBilling
from .project import (
    BudgetRange,
    Industry,
    PrimaryObjective,
    TeamSize,
    TechnicalLevel,
    TechStack,
    Timeline,
)


# Plan, cycle, package and pool stay plain strings so unknown values reach
# the catalog and come back as invalid_input rather than a schema error.
class RegisterRequest(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str = Field(pattern=r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
    company: str | None = None
    phone: str | None = None


class ProfileUpdateRequest(BaseModel):
    # Only fields present in the body are applied
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None


class PricingOnboardingRequest(BaseModel):
    selected_plan: str
    billing_cycle: str
    add_ons: list[str] = Field(default_factory=list)


class ChangePlanRequest(BaseModel):
    selected_plan: str
    billing_cycle: str


class AddonPurchaseRequest(BaseModel):
    package_type: str


class CreditPurchaseRequest(BaseModel):
    pool: str
    quantity: int
    project_id: str | None = None


class ProjectCreateRequest(BaseModel):
    project_name: str = Field(min_length=1)
    industry: Industry
    team_size: TeamSize
    primary_objective: PrimaryObjective
    timeline: Timeline
    budget_range: BudgetRange
    technical_level: TechnicalLevel
    need_cofounder: bool = False
    preferred_tech_stack: TechStack
    project_description: str | None = None


class ProjectUpdateRequest(BaseModel):
    project_name: str
    project_description: str | None = None


class BillingState(BaseModel):
    id: Optional[str]
    selected_plan: str
    billing_cycle: str
    plan_price: float
    add_ons: list[str]
    status: str
    payment_status: str
    subscription_start_date: datetime
    subscription_end_date: Optional[datetime]
    next_billing_date: Optional[datetime]
    image_credits: int
    document_credits: int
    total_image_purchases: int
    total_document_purchases: int
    discount_code: Optional[str]
    discount_percentage: float

    @classmethod
    def from_record(cls, record: BillingRecord) -> "BillingState":
        return cls(
            id=record.id,
            selected_plan=record.selected_plan,
            billing_cycle=record.billing_cycle.value,
            plan_price=float(record.plan_price),
            add_ons=sorted(record.add_ons),
            status=record.status.value,
            payment_status=record.payment_status.value,
            subscription_start_date=record.subscription_start_date,
            subscription_end_date=record.subscription_end_date,
            next_billing_date=record.next_billing_date,
            image_credits=record.image_credits,
            document_credits=record.document_credits,
            total_image_purchases=record.total_image_purchases,
            total_document_purchases=record.total_document_purchases,
            discount_code=record.discount_code,
            discount_percentage=float(record.discount_percentage or 0),
        )


class UserProfileResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str]
    company: Optional[str]
    address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    created_at: datetime
    billing: Optional[BillingState]

    @classmethod
    def from_user_with_billing(cls, data: UserWithBilling) -> "UserProfileResponse":
        user = data.user
        return cls(
            id=user.id or "",
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone,
            company=user.company,
            address=user.address,
            city=user.city,
            state=user.state,
            created_at=user.created_at,
            billing=BillingState.from_record(data.billing) if data.billing else None,
        )


class AddonPurchaseResponse(BaseModel):
    package_type: str
    add_ons: list[str]


class CreditPurchaseResponse(BaseModel):
    pool: str
    balance: int
    total_purchases: int
    purchase_id: str

    @classmethod
    def from_result(cls, result: CreditPurchaseResult) -> "CreditPurchaseResponse":
        return cls(
            pool=result.pool.value,
            balance=result.balance,
            total_purchases=result.total_purchases,
            purchase_id=result.purchase.id,
        )

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status

from ..catalog import PlanCatalog
from ..models.api_models import (
    AddonPurchaseRequest,
    AddonPurchaseResponse,
    BillingState,
    ChangePlanRequest,
    CreditPurchaseRequest,
    CreditPurchaseResponse,
    PricingOnboardingRequest,
    ProfileUpdateRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    RegisterRequest,
    UserProfileResponse,
)
from ..models.project import Project
from ..models.user import UserAccount
from ..services.account_service import AccountService
from ..services.billing_service import BillingService
from ..services.project_service import ProjectService


@dataclass(frozen=True)
class ServiceContainer:
    """Services wired by the app factory and shared by all requests."""

    billing: BillingService
    accounts: AccountService
    projects: ProjectService
    catalog: PlanCatalog
    request_id_header: str = "X-Request-Id"


router = APIRouter(tags=["billing"])


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_user_id(request: Request) -> str:
    # Set by CallerIdentityMiddleware
    return request.state.user_id


def get_correlation_id(
    request: Request, services: ServiceContainer = Depends(get_services)
) -> Optional[str]:
    return request.headers.get(services.request_id_header)


@router.post(
    "/user/register",
    response_model=UserAccount,
    status_code=status.HTTP_201_CREATED,
)
async def register_user(
    payload: RegisterRequest,
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> UserAccount:
    return await services.accounts.create_user(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        company=payload.company,
        phone=payload.phone,
        correlation_id=correlation_id,
    )


@router.post("/user/pricing-onboarding", response_model=BillingState)
async def pricing_onboarding(
    payload: PricingOnboardingRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> BillingState:
    record = await services.billing.apply_onboarding(
        user_id=user_id,
        plan=payload.selected_plan,
        cycle=payload.billing_cycle,
        add_ons=payload.add_ons,
        correlation_id=correlation_id,
    )
    return BillingState.from_record(record)


@router.get("/user/profile", response_model=UserProfileResponse)
async def get_profile(
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
) -> UserProfileResponse:
    data = await services.billing.get_billing_for_user(user_id)
    return UserProfileResponse.from_user_with_billing(data)


@router.put("/user/profile", response_model=UserAccount)
async def update_profile(
    payload: ProfileUpdateRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> UserAccount:
    return await services.accounts.update_profile(
        user_id,
        payload.model_dump(exclude_unset=True),
        correlation_id=correlation_id,
    )


@router.delete("/user/profile")
async def delete_profile(
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> dict[str, Any]:
    await services.accounts.delete_account(user_id, correlation_id=correlation_id)
    return {"success": True, "message": "Account and related data deleted successfully"}


@router.put("/user/billing/plan", response_model=BillingState)
async def change_plan(
    payload: ChangePlanRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> BillingState:
    record = await services.billing.change_plan(
        user_id=user_id,
        new_plan=payload.selected_plan,
        new_cycle=payload.billing_cycle,
        correlation_id=correlation_id,
    )
    return BillingState.from_record(record)


@router.post("/user/billing/cancel", response_model=BillingState)
async def cancel_subscription(
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> BillingState:
    record = await services.billing.cancel(user_id, correlation_id=correlation_id)
    return BillingState.from_record(record)


@router.post("/user/billing/addons", response_model=AddonPurchaseResponse)
async def purchase_addon(
    payload: AddonPurchaseRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> AddonPurchaseResponse:
    record = await services.billing.purchase_addon(
        user_id=user_id,
        package_type=payload.package_type,
        correlation_id=correlation_id,
    )
    return AddonPurchaseResponse(
        package_type=payload.package_type, add_ons=sorted(record.add_ons)
    )


@router.post("/user/billing/credits", response_model=CreditPurchaseResponse)
async def purchase_credits(
    payload: CreditPurchaseRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> CreditPurchaseResponse:
    result = await services.billing.purchase_credits(
        user_id=user_id,
        pool=payload.pool,
        quantity=payload.quantity,
        project_id=payload.project_id,
        correlation_id=correlation_id,
    )
    return CreditPurchaseResponse.from_result(result)


@router.get("/billing/catalog", response_model=PlanCatalog)
async def get_catalog(services: ServiceContainer = Depends(get_services)) -> PlanCatalog:
    return services.catalog


@router.post(
    "/user/create-project",
    response_model=Project,
    status_code=status.HTTP_201_CREATED,
)
async def create_project(
    payload: ProjectCreateRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Project:
    project = Project(user_id=user_id, **payload.model_dump())
    return await services.projects.create_project(user_id, project)


@router.get("/user/projects", response_model=list[Project])
async def list_projects(
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[Project]:
    return list(await services.projects.list_projects(user_id))


@router.get("/user/projects/{project_id}", response_model=Project)
async def get_project(
    project_id: str,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Project:
    return await services.projects.get_project(user_id, project_id)


@router.put("/user/projects/{project_id}", response_model=Project)
async def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Project:
    return await services.projects.update_project(
        user_id,
        project_id,
        project_name=payload.project_name,
        project_description=payload.project_description,
    )


@router.delete("/user/projects/{project_id}")
async def delete_project(
    project_id: str,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    await services.projects.delete_project(user_id, project_id)
    return {"success": True, "message": "Project deleted successfully"}

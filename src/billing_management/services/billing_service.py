from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, Optional

from ..catalog import BUILDER_CATALOG, PlanCatalog, parse_cycle
from ..db.base import BaseDBManager
from ..errors import BillingError, NoBillingRecordError, NotFoundError
from ..logging.ledger_logger import LedgerLogger
from ..models.billing import (
    BillingCycle,
    BillingRecord,
    CreditPool,
    CreditPurchaseResult,
    UserWithBilling,
)
from ..models.project import Project
from ..models.user import UserAccount
from ..timeutils import now_utc
from . import entitlements


logger = logging.getLogger(__name__)


class BillingService:
    """
    Billing record manager: onboarding, plan changes, cancellation, add-on
    and credit pack purchases.

    Every mutation reads the current row and writes the next one inside a
    single transaction, and the write is conditioned on the version that
    was read. A concurrent writer therefore surfaces as ConflictError
    instead of a lost update; the service never retries on its own.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        catalog: PlanCatalog = BUILDER_CATALOG,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._catalog = catalog
        self._clock = clock

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog

    async def apply_onboarding(
        self,
        user_id: str,
        plan: str,
        cycle: BillingCycle | str,
        add_ons: Iterable[str] = (),
        correlation_id: str | None = None,
    ) -> BillingRecord:
        """
        Create the user's billing record, or fully replace its plan fields.

        Credit balances and purchase histories survive a repeated onboarding.
        """
        add_ons = list(add_ons)
        async with self._rejections_logged("pricing_onboarding", user_id, correlation_id):
            self._catalog.plan(plan)
            cycle = parse_cycle(cycle)
            entitlements.validate_add_ons(self._catalog, add_ons)

            now = self._clock()
            async with self._db.transaction():
                await self._require_user(user_id)
                current = await self._db.get_billing(user_id)
                if current is None:
                    record = await self._db.add_billing(
                        entitlements.new_billing_record(
                            self._catalog, user_id, plan, cycle, add_ons, now
                        )
                    )
                else:
                    record = await self._db.replace_billing(
                        entitlements.apply_onboarding(
                            self._catalog, current, plan, cycle, add_ons, now
                        ),
                        expected_version=current.version,
                    )

        logger.info(
            "Pricing onboarding completed for user %s: plan=%s cycle=%s",
            user_id,
            record.selected_plan,
            record.billing_cycle.value,
        )
        await self._ledger.log_billing_event(
            user_id=user_id,
            message="Pricing onboarding completed",
            details={
                "created": current is None,
                "selected_plan": record.selected_plan,
                "billing_cycle": record.billing_cycle.value,
                "plan_price": str(record.plan_price),
                "add_ons": sorted(record.add_ons),
            },
            correlation_id=correlation_id,
        )
        return record

    async def get_billing_for_user(self, user_id: str) -> UserWithBilling:
        async with self._rejections_logged("get_billing", user_id, None):
            async with self._db.transaction():
                user = await self._require_user(user_id)
                billing = await self._db.get_billing(user_id)
        return UserWithBilling(user=user, billing=billing)

    async def change_plan(
        self,
        user_id: str,
        new_plan: str,
        new_cycle: BillingCycle | str,
        correlation_id: str | None = None,
    ) -> BillingRecord:
        async with self._rejections_logged("change_plan", user_id, correlation_id):
            self._catalog.plan(new_plan)
            new_cycle = parse_cycle(new_cycle)

            now = self._clock()
            async with self._db.transaction():
                current = await self._require_billing(user_id)
                record = await self._db.replace_billing(
                    entitlements.apply_plan_change(
                        self._catalog, current, new_plan, new_cycle, now
                    ),
                    expected_version=current.version,
                )

        dropped = sorted(current.add_ons - record.add_ons)
        logger.info(
            "Plan changed for user %s: %s -> %s (%s)",
            user_id,
            current.selected_plan,
            record.selected_plan,
            record.billing_cycle.value,
        )
        await self._ledger.log_billing_event(
            user_id=user_id,
            message="Plan changed",
            details={
                "previous_plan": current.selected_plan,
                "selected_plan": record.selected_plan,
                "billing_cycle": record.billing_cycle.value,
                "plan_price": str(record.plan_price),
                "dropped_add_ons": dropped,
            },
            correlation_id=correlation_id,
        )
        return record

    async def cancel(
        self, user_id: str, correlation_id: str | None = None
    ) -> BillingRecord:
        async with self._rejections_logged("cancel_subscription", user_id, correlation_id):
            now = self._clock()
            async with self._db.transaction():
                current = await self._require_billing(user_id)
                record = await self._db.replace_billing(
                    entitlements.apply_cancellation(self._catalog, current, now),
                    expected_version=current.version,
                )

        logger.info("Subscription cancelled for user %s (was %s)", user_id, current.selected_plan)
        await self._ledger.log_billing_event(
            user_id=user_id,
            message="Subscription cancelled",
            details={
                "previous_plan": current.selected_plan,
                "dropped_add_ons": sorted(current.add_ons - record.add_ons),
            },
            correlation_id=correlation_id,
        )
        return record

    async def purchase_addon(
        self,
        user_id: str,
        package_type: str,
        correlation_id: str | None = None,
    ) -> BillingRecord:
        async with self._rejections_logged("purchase_addon", user_id, correlation_id):
            self._catalog.add_on(package_type)
            async with self._db.transaction():
                current = await self._require_billing(user_id)
                record = await self._db.replace_billing(
                    entitlements.apply_add_on_purchase(self._catalog, current, package_type),
                    expected_version=current.version,
                )

        logger.info("Add-on %s purchased by user %s", package_type, user_id)
        await self._ledger.log_purchase(
            user_id=user_id,
            message="Add-on purchased",
            details={"package_type": package_type, "add_ons": sorted(record.add_ons)},
            correlation_id=correlation_id,
        )
        return record

    async def purchase_credits(
        self,
        user_id: str,
        pool: CreditPool | str,
        quantity: int,
        project_id: Optional[str] = None,
        correlation_id: str | None = None,
    ) -> CreditPurchaseResult:
        async with self._rejections_logged("purchase_credits", user_id, correlation_id):
            pack = entitlements.resolve_credit_pack(self._catalog, pool, quantity)

            now = self._clock()
            async with self._db.transaction():
                current = await self._require_billing(user_id)
                project = await self._require_project(project_id, user_id) if project_id else None
                updated, purchase = entitlements.apply_credit_purchase(
                    self._catalog, current, pack.pool, quantity, now, project=project
                )
                record = await self._db.replace_billing(updated, expected_version=current.version)

        result = CreditPurchaseResult(
            pool=pack.pool,
            balance=record.credits(pack.pool),
            total_purchases=record.total_purchases(pack.pool),
            purchase=purchase,
        )
        logger.info(
            "%s credits purchased by user %s: +%d (balance %d)",
            pack.pool.value.capitalize(),
            user_id,
            quantity,
            result.balance,
        )
        await self._ledger.log_purchase(
            user_id=user_id,
            message="Credits purchased",
            details={
                "pool": pack.pool.value,
                "purchase": purchase.model_dump(mode="json"),
                "balance": result.balance,
                "total_purchases": result.total_purchases,
            },
            correlation_id=correlation_id,
        )
        return result

    async def _require_user(self, user_id: str) -> UserAccount:
        user = await self._db.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    async def _require_billing(self, user_id: str) -> BillingRecord:
        await self._require_user(user_id)
        record = await self._db.get_billing(user_id)
        if record is None:
            raise NoBillingRecordError(
                "No billing record found. Complete pricing onboarding first.",
                details={"user_id": user_id},
            )
        return record

    async def _require_project(self, project_id: str, user_id: str) -> Project:
        project = await self._db.get_project(project_id, user_id)
        if project is None:
            raise NotFoundError(
                "Project not found or you do not have access to this project",
                details={"project_id": project_id},
            )
        return project

    @asynccontextmanager
    async def _rejections_logged(
        self, operation: str, user_id: str, correlation_id: Optional[str]
    ) -> AsyncIterator[None]:
        # Wraps the transaction, so the ledger entry is written after rollback
        try:
            yield
        except BillingError as exc:
            logger.warning("%s rejected for user %s: %s", operation, user_id, exc.message)
            await self._ledger.log_error(
                message=exc.message,
                details={"operation": operation, "code": exc.code, **exc.details},
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise

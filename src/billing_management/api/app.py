from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..catalog import PlanCatalog, load_catalog
from ..config import Settings, get_settings
from ..db.base import BaseDBManager
from ..db.memory import InMemoryDBManager
from ..db.mongo import MongoDBManager
from ..errors import (
    AlreadyOwnedError,
    BillingError,
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    PlanIncludesFeatureError,
    UnavailableError,
)
from ..logging.ledger_logger import LedgerLogger
from ..services.account_service import AccountService
from ..services.billing_service import BillingService
from ..services.project_service import ProjectService
from ..timeutils import now_utc
from .middleware import CallerIdentityMiddleware
from .router import ServiceContainer, router


logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[BillingError], int] = {
    NotFoundError: 404,
    InvalidInputError: 400,
    InvalidStateError: 400,
    AlreadyOwnedError: 409,
    PlanIncludesFeatureError: 409,
    ConflictError: 409,
    UnavailableError: 503,
}


def status_for(exc: BillingError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_db_manager(settings: Settings) -> BaseDBManager:
    if settings.mongo_uri:
        return MongoDBManager.from_client_uri(
            settings.mongo_uri,
            settings.mongo_db,
            use_transactions=settings.mongo_transactions,
        )
    logger.warning("BILLING_MONGO_URI not set; using the in-memory store")
    return InMemoryDBManager()


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[BaseDBManager] = None,
    catalog: Optional[PlanCatalog] = None,
    clock: Callable[[], datetime] = now_utc,
) -> FastAPI:
    """
    Build the HTTP application. The storage client is created here (or
    injected) and closed on shutdown; services only ever receive it.
    """
    settings = settings or get_settings()
    logging.getLogger("billing_management").setLevel(settings.log_level.upper())

    db = db or create_db_manager(settings)
    catalog = catalog or load_catalog(settings.plan_catalog, settings.plan_catalog_path)
    ledger = LedgerLogger(db=db, file_path=settings.ledger_log_path)

    services = ServiceContainer(
        billing=BillingService(db=db, ledger=ledger, catalog=catalog, clock=clock),
        accounts=AccountService(db=db, ledger=ledger),
        projects=ProjectService(db=db, catalog=catalog),
        catalog=catalog,
        request_id_header=settings.request_id_header,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if isinstance(db, MongoDBManager):
            await db.ensure_indexes()
        yield
        await db.close()

    app = FastAPI(title="Billing Management", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services

    prefix = settings.api_prefix.rstrip("/")
    app.add_middleware(
        CallerIdentityMiddleware,
        path_prefix=prefix,
        user_id_header=settings.user_id_header,
        skip_paths=(
            f"{prefix}/user/register",
            f"{prefix}/billing/catalog",
            f"{prefix}/health",
        ),
    )
    app.add_exception_handler(BillingError, billing_error_handler)
    app.include_router(router, prefix=prefix)

    @app.get(f"{prefix}/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app

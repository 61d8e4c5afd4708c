from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import Field

from ..timeutils import now_utc
from .base import DBSerializableModel


class LedgerEventType(str, Enum):
    BILLING = "billing"
    PURCHASE = "purchase"
    ACCOUNT = "account"
    ERROR = "error"


class LedgerEntry(DBSerializableModel):
    """
    Structured audit entry persisted to DB and mirrored to the ledger file.
    """

    collection_name: ClassVar[str] = "billing_ledger"

    id: Optional[str] = Field(default=None)
    event_type: LedgerEventType
    user_id: Optional[str] = None
    correlation_id: Optional[str] = Field(
        default=None,
        description="Correlation id for tracing a logical operation across components.",
    )
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=now_utc)

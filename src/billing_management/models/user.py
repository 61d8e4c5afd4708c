from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import Field, field_validator

from ..timeutils import now_utc
from .base import DBSerializableModel


class UserAccount(DBSerializableModel):
    """
    Identity anchor for billing records and projects.

    Credentials live with the external authenticator; the billing engine
    only needs profile fields and existence checks.
    """

    collection_name: ClassVar[str] = "users"
    unique_fields: ClassVar[tuple[str, ...]] = ("email",)

    id: Optional[str] = Field(default=None)
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

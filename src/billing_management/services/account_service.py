from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional

from ..db.base import BaseDBManager
from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..logging.ledger_logger import LedgerLogger
from ..models.user import UserAccount
from ..timeutils import now_utc


logger = logging.getLogger(__name__)


class AccountService:
    """
    User profile lifecycle: creation, partial profile updates and
    whole-account deletion.
    """

    def __init__(self, db: BaseDBManager, ledger: LedgerLogger) -> None:
        self._db = db
        self._ledger = ledger

    async def create_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        company: Optional[str] = None,
        phone: Optional[str] = None,
        correlation_id: str | None = None,
    ) -> UserAccount:
        user = UserAccount(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            company=company,
            phone=phone,
        )
        async with self._db.transaction():
            if await self._db.get_user_by_email(user.email) is not None:
                raise ConflictError("Email already registered", details={"email": user.email})
            user = await self._db.add_user(user)

        logger.info("User %s registered", user.id)
        await self._ledger.log_account_event(
            user_id=user.id or "",
            message="User registered",
            details={"email": user.email},
            correlation_id=correlation_id,
        )
        return user

    async def get_user(self, user_id: str) -> UserAccount:
        user = await self._db.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    async def update_profile(
        self,
        user_id: str,
        changes: Mapping[str, Optional[str]],
        correlation_id: str | None = None,
    ) -> UserAccount:
        """
        Partially update profile fields. Only keys present in `changes` are
        touched; an empty or blank optional field clears it.
        """
        update = _validated_profile_changes(changes)

        async with self._db.transaction():
            user = await self.get_user(user_id)
            email = update.get("email")
            if email is not None and email != user.email:
                existing = await self._db.get_user_by_email(email)
                if existing is not None and existing.id != user_id:
                    raise ConflictError(
                        "Email already in use by another account", details={"email": email}
                    )
            user = await self._db.update_user(
                user.model_copy(update={**update, "updated_at": now_utc()})
            )

        logger.info("Profile updated for user %s: %s", user_id, ", ".join(sorted(update)))
        await self._ledger.log_account_event(
            user_id=user_id,
            message="Profile updated",
            details={"fields": sorted(update)},
            correlation_id=correlation_id,
        )
        return user

    async def delete_account(
        self, user_id: str, correlation_id: str | None = None
    ) -> None:
        """
        Delete the user together with their billing record and projects.

        All three deletions share one transaction: if any step fails the
        account is left exactly as it was.
        """
        async with self._db.transaction():
            if await self._db.get_user(user_id) is None:
                raise NotFoundError("User not found", details={"user_id": user_id})

            billing_deleted = await self._db.delete_billing(user_id)
            projects_deleted = await self._db.delete_projects_for_user(user_id)

            if not await self._db.delete_user(user_id):
                raise ConflictError(
                    "Failed to delete user", details={"user_id": user_id}
                )

        logger.info(
            "Account %s deleted (billing=%s, projects=%d)",
            user_id,
            billing_deleted,
            projects_deleted,
        )
        await self._ledger.log_account_event(
            user_id=user_id,
            message="Account and related data deleted",
            details={"billing_deleted": billing_deleted, "projects_deleted": projects_deleted},
            correlation_id=correlation_id,
        )


EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^\+?[\d\s\-().]+$")

# Optional profile fields and their maximum stored length
_OPTIONAL_LIMITS: Dict[str, Optional[int]] = {
    "phone": None,
    "company": 150,
    "address": 200,
    "city": 100,
    "state": 100,
}
_REQUIRED_FIELDS = ("first_name", "last_name", "email")


def _validated_profile_changes(changes: Mapping[str, Optional[str]]) -> Dict[str, Any]:
    unknown = set(changes) - set(_REQUIRED_FIELDS) - set(_OPTIONAL_LIMITS)
    if unknown:
        raise InvalidInputError(
            "Unknown profile fields", details={"fields": sorted(unknown)}
        )
    if not changes:
        raise InvalidInputError("No fields provided to update")

    update: Dict[str, Any] = {}
    for field in _REQUIRED_FIELDS:
        if field not in changes:
            continue
        value = (changes[field] or "").strip()
        if not value:
            label = field.replace("_", " ").capitalize()
            raise InvalidInputError(f"{label} cannot be empty", details={"field": field})
        update[field] = value

    if "email" in update:
        if not EMAIL_RE.match(update["email"]):
            raise InvalidInputError("Please provide a valid email address")
        update["email"] = update["email"].lower()

    for field, limit in _OPTIONAL_LIMITS.items():
        if field not in changes:
            continue
        value = (changes[field] or "").strip() or None
        if value is not None and limit is not None and len(value) > limit:
            label = field.capitalize()
            raise InvalidInputError(
                f"{label} must be at most {limit} characters", details={"field": field}
            )
        update[field] = value

    if update.get("phone") is not None and not PHONE_RE.match(update["phone"]):
        raise InvalidInputError("Please provide a valid phone number")
    return update

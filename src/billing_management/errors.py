from __future__ import annotations

from typing import Any, Dict, Optional


class BillingError(Exception):
    """
    Base class for every failure reported by the billing engine.

    `code` is a stable identifier the HTTP layer exposes to clients;
    `details` carries structured context that is mirrored to the ledger.
    """

    code: str = "billing_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(BillingError):
    code = "not_found"


class NoBillingRecordError(NotFoundError):
    code = "no_billing_record"


class InvalidInputError(BillingError, ValueError):
    code = "invalid_input"


class InvalidStateError(BillingError):
    code = "invalid_state"


class AlreadyOwnedError(BillingError):
    code = "already_owned"


class PlanIncludesFeatureError(BillingError):
    code = "plan_includes_feature"


class ConflictError(BillingError):
    code = "conflict"


class UnavailableError(BillingError):
    code = "unavailable"

"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- EntitlementEvaluationError: evaluation failed (fail-closed)
- UnknownFeatureError: feature id missing from the catalog

A denied feature is not an error; it is an EntitlementDecision with
granted=False.
"""

from typing import Optional

FAIL_CLOSED_ERROR_CODE = "ENTITLEMENTS_UNAVAILABLE_FAIL_CLOSED"


class EntitlementError(Exception):
    """Base exception for entitlement-related failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EntitlementEvaluationError(EntitlementError):
    """
    Raised when subscription state cannot be read (fail-closed).

    Carries a machine-readable error_code for the UI to display.
    """

    def __init__(
        self,
        account_id: str,
        detail: str,
        cause: Optional[Exception] = None,
    ):
        self.account_id = account_id
        self.detail = detail
        self.cause = cause
        self.error_code = FAIL_CLOSED_ERROR_CODE
        super().__init__(f"Entitlement evaluation failed for {account_id}: {detail}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.detail,
            "account_id": self.account_id,
        }


class UnknownFeatureError(EntitlementError):
    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        self.error_code = "UNKNOWN_FEATURE"
        super().__init__(f"Unknown feature: {feature_id}")

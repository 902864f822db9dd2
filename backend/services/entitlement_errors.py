"""Entitlement error taxonomy.

IdentityUnresolved and FeatureDenied reach the caller. ConfigNotFound and
BackendUnavailable are absorbed by the resolver into the minimal feature set.
"""
from typing import Optional
from fastapi import HTTPException, status


class EntitlementError(Exception):
    """Base class for entitlement failures."""


class IdentityUnresolved(EntitlementError):
    """No authenticated session or tenant could be determined."""

    def __init__(self, message: str = "Authentication required"):
        self.message = message
        super().__init__(message)


class ConfigNotFound(EntitlementError):
    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant config not found: {tenant_id}")


class BackendUnavailable(EntitlementError):
    def __init__(self, tenant_id: Optional[str], cause: str):
        self.tenant_id = tenant_id
        self.cause = cause
        super().__init__(f"Tenant config store unavailable (tenant_id={tenant_id}): {cause}")


class FeatureDenied(HTTPException):
    """Raised when a protected operation is attempted without the feature."""

    def __init__(
        self,
        feature: str,
        current_plan: Optional[str],
        required_plan: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.feature = feature
        self.current_plan = current_plan
        self.required_plan = required_plan
        self.message = message or denial_message(feature, current_plan, required_plan)
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=self.to_dict(),
        )

    def to_dict(self) -> dict:
        return {
            "error": "Feature not enabled",
            "message": self.message,
            "feature": self.feature,
            "current_plan": self.current_plan,
            "required_plan": self.required_plan,
            "upgrade_required": True,
        }


class GuardRedirect(Exception):
    """Terminal redirect raised by page guards; rendered as a 303 by the app."""

    def __init__(self, location: str, reason: Optional[str] = None):
        self.location = location
        self.reason = reason
        super().__init__(f"Redirect to {location}: {reason}")


def denial_message(feature: str, current_plan: Optional[str], required_plan: Optional[str]) -> str:
    if required_plan and current_plan:
        return (
            f"Feature '{feature}' requires the {required_plan} plan or higher. "
            f"Current plan: {current_plan}"
        )
    if current_plan:
        return f"Feature '{feature}' is not enabled on the {current_plan} plan"
    return f"Feature '{feature}' is not available on your current plan"

# Overview: Service-layer authorization checks against the role capability policy.

from __future__ import annotations

from ..models import User
from ..permissions import get_capabilities_for_role, validate_capability_code
from . import audit_service


class PermissionDeniedError(Exception):
    """Raised when a user lacks the capability an operation needs."""

    code = "PERMISSION_DENIED"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def has_capability(user: User | None, capability: str) -> bool:
    if user is None or not user.is_active:
        return False
    return capability in get_capabilities_for_role(user.role)


def require_capability(user: User | None, capability: str, *, resource: str | None = None) -> None:
    """
    Single authorization check for an operation.

    Denials are audited with success=False and raise PermissionDeniedError.
    """
    if not validate_capability_code(capability):
        raise ValueError(f"Unknown capability {capability}")
    if has_capability(user, capability):
        return
    audit_service.emit_audit_event(
        business_id=user.business_id if user else None,
        user_id=user.id if user else None,
        action="PERMISSION_DENIED",
        success=False,
        reason=f"Missing capability {capability}",
        details={"capability": capability, "resource": resource},
    )
    raise PermissionDeniedError(
        f"Capability {capability} required",
        {"capability": capability, "role": user.role if user else None},
    )

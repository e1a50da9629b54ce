from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional
import uuid

from pharmaflow.core.exceptions import PermissionDenied


# Permission codes are "<resource>:<action>", e.g. "purchase_orders:approve_level1"
PURCHASE_ORDERS = "purchase_orders"
INVOICE_RECEIVING = "invoice_receiving"
QUALITY_CONTROL = "quality_control"


def permission_code(resource: str, action: str) -> str:
    return f"{resource}:{action}"


@dataclass(frozen=True)
class UserSession:
    """
    Identity and grants of the acting user.

    Built once per request from the bearer token and passed explicitly to
    every service call.
    """
    user_id: uuid.UUID
    name: str = ""
    email: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    is_super_admin: bool = False

    @classmethod
    def build(
        cls,
        user_id: uuid.UUID,
        permissions: Iterable[str] = (),
        name: str = "",
        email: Optional[str] = None,
        is_super_admin: bool = False,
    ) -> "UserSession":
        return cls(
            user_id=user_id,
            name=name,
            email=email,
            permissions=frozenset(permissions),
            is_super_admin=is_super_admin,
        )


def has_permission(session: UserSession, resource: str, action: str) -> bool:
    """
    Check if the session holds `resource:action`.
    SUPER_ADMIN automatically has all permissions, and `resource:*` grants
    every action on a resource.
    """
    if session.is_super_admin:
        return True

    return (
        permission_code(resource, action) in session.permissions
        or permission_code(resource, "*") in session.permissions
    )


def require_permission(session: UserSession, resource: str, action: str) -> None:
    """Raise PermissionDenied unless the session holds the permission."""
    if not has_permission(session, resource, action):
        raise PermissionDenied(resource, action)


class PermissionChecker:
    """
    Permission checker utility bound to one session.
    """

    def __init__(self, session: UserSession):
        self.session = session

    def has_permission(self, code: str) -> bool:
        """
        Check a full permission code (e.g. 'purchase_orders:submit').

        Returns:
            True if user has the permission
        """
        resource, _, action = code.partition(":")
        return has_permission(self.session, resource, action)

    def has_any_permission(self, codes: List[str]) -> bool:
        return any(self.has_permission(code) for code in codes)

    def has_all_permissions(self, codes: List[str]) -> bool:
        return all(self.has_permission(code) for code in codes)

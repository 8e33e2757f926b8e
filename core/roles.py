"""
Operator roles passed explicitly into guarded operations.

Services never look up the request session themselves; views resolve the
caller's role once with ``role_for_user`` and hand it down.
"""
import logging
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SUPERADMIN = 'SUPERADMIN'
    SALES_ADMIN = 'SALES_ADMIN'
    ACCOUNTS_ADMIN = 'ACCOUNTS_ADMIN'
    CUSTOMER = 'CUSTOMER'


ORDER_OPERATORS = (Role.SUPERADMIN, Role.SALES_ADMIN)
ACCOUNTS_VIEWERS = (Role.SUPERADMIN, Role.ACCOUNTS_ADMIN)
PAYMENT_COLLECTORS = (Role.SUPERADMIN, Role.SALES_ADMIN, Role.ACCOUNTS_ADMIN)
INVENTORY_MANAGERS = (Role.SUPERADMIN,)


class AccessDenied(Exception):
    """Raised when the acting role may not perform an operation."""
    def __init__(self, acting_role: Optional[Role], allowed: Iterable[Role]):
        self.acting_role = acting_role
        self.allowed = tuple(allowed)
        role_name = acting_role.value if acting_role else 'anonymous'
        super().__init__(
            f"Role {role_name} is not allowed; requires one of "
            f"{', '.join(r.value for r in self.allowed)}"
        )


def require_role(acting_role: Optional[Role], allowed: Iterable[Role]) -> None:
    allowed = tuple(allowed)
    if acting_role not in allowed:
        logger.warning(f"Access denied for role {acting_role}")
        raise AccessDenied(acting_role, allowed)


def role_for_user(user) -> Optional[Role]:
    """
    Map an authenticated Django user to a Role.

    Superusers are SUPERADMIN; staff get the first role-named group they
    belong to; any other authenticated user is a CUSTOMER.
    """
    if user is None or not user.is_authenticated:
        return None
    if user.is_superuser:
        return Role.SUPERADMIN

    group_names = set(user.groups.values_list('name', flat=True))
    for role in (Role.SUPERADMIN, Role.SALES_ADMIN, Role.ACCOUNTS_ADMIN):
        if role.value in group_names:
            return role
    return Role.CUSTOMER

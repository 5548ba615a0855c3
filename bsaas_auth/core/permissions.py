from enum import Enum
from typing import Iterable


class UserRole(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    STAFF = "staff"
    CUSTOMER = "customer"
    GUEST = "guest"


# Each role implicitly holds every role listed for it.
ROLE_HIERARCHY: dict[str, frozenset[str]] = {
    UserRole.ADMIN.value: frozenset({"admin", "owner", "staff", "customer"}),
    UserRole.OWNER.value: frozenset({"owner", "staff", "customer"}),
    UserRole.STAFF.value: frozenset({"staff", "customer"}),
    UserRole.CUSTOMER.value: frozenset({"customer"}),
    UserRole.GUEST.value: frozenset(),
}

DEFAULT_ROLE_DESCRIPTIONS: dict[str, str] = {
    UserRole.ADMIN.value: "Platform administrator",
    UserRole.OWNER.value: "Salon owner",
    UserRole.STAFF.value: "Salon staff member",
    UserRole.CUSTOMER.value: "Booking customer",
    UserRole.GUEST.value: "Unverified visitor",
}


def effective_roles(role_names: Iterable[str]) -> set[str]:
    effective: set[str] = set()
    for name in role_names:
        effective |= ROLE_HIERARCHY.get(name, frozenset())
    return effective


def has_any_role(role_names: Iterable[str], allowed: Iterable[str]) -> bool:
    allowed_set = {role.value if isinstance(role, UserRole) else str(role) for role in allowed}
    if not allowed_set:
        return True
    return bool(effective_roles(role_names) & allowed_set)

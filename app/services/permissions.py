"""Role defaults for ``(action, resource)`` permission checks."""
from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from app.schemas.auth import UserRole

READ_ACTIONS = frozenset({"read", "list"})
ALL_ACTIONS = frozenset({"create", "read", "update", "delete", "list"})

# Resources each role may act on with every action.
_FULL_ACCESS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.ACCOUNTANT: frozenset({"invoice", "quote", "customer", "product", "payment"}),
    UserRole.SALES: frozenset({"quote", "customer", "product"}),
}
# Resources each role may only read or list.
_READ_ACCESS: Dict[UserRole, Optional[FrozenSet[str]]] = {
    UserRole.SALES: frozenset({"invoice"}),
    UserRole.USER: None,
    UserRole.READONLY: None,
}


def role_allows(role: UserRole | str, action: str, resource: str, *, is_active: bool = True) -> bool:
    if not is_active:
        return False
    role = UserRole(role)
    action = action.lower()
    resource = resource.lower()

    if role == UserRole.ADMIN:
        return True
    if role == UserRole.MANAGER:
        return not (action == "delete" and resource == "user")
    if resource in _FULL_ACCESS.get(role, frozenset()):
        return True
    if action in READ_ACTIONS and role in _READ_ACCESS:
        readable = _READ_ACCESS[role]
        # None means every resource.
        return readable is None or resource in readable
    return False

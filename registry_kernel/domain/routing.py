"""
Approval routing policy.

Maps a maker's role to the single role that must check the request.  The
mapping does not depend on entity type, so no controller or apply step
carries its own approval-role logic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from registry_kernel.domain.approval import Role
from registry_kernel.exceptions import UnroutableRoleError

DEFAULT_ROUTES: Mapping[Role, Role] = MappingProxyType({
    Role.SUBCITY_NORMAL: Role.SUBCITY_ADMIN,
    Role.SUBCITY_AUDITOR: Role.SUBCITY_ADMIN,
    Role.REVENUE_USER: Role.REVENUE_ADMIN,
})

# Roles that may decide requests routed to any approver role
SUPERIOR_ROLES: frozenset[Role] = frozenset({Role.CITY_ADMIN})

# Approver roles confined to their own sub-city
SUB_CITY_SCOPED_ROLES: frozenset[Role] = frozenset({Role.SUBCITY_ADMIN})


@dataclass(frozen=True)
class RoutingPolicy:
    """Pure maker-role to approver-role routing."""

    routes: Mapping[Role, Role] = field(default_factory=lambda: DEFAULT_ROUTES)
    superior_roles: frozenset[Role] = SUPERIOR_ROLES

    def approver_for(self, maker_role: Role | str) -> Role:
        """Return the approver role for ``maker_role``.

        Raises:
            UnroutableRoleError: If the role is unknown or has no route.
        """
        try:
            role = Role(maker_role)
        except ValueError:
            raise UnroutableRoleError(str(maker_role)) from None
        approver = self.routes.get(role)
        if approver is None:
            raise UnroutableRoleError(role.value)
        return approver

    def can_decide(self, checker_role: Role | str, approver_role: Role | str) -> bool:
        try:
            checker = Role(checker_role)
        except ValueError:
            return False
        return checker == Role(approver_role) or checker in self.superior_roles

    def is_checker_role(self, role: Role | str) -> bool:
        try:
            role = Role(role)
        except ValueError:
            return False
        return role in set(self.routes.values()) or role in self.superior_roles

    def is_sub_city_scoped(self, checker_role: Role | str) -> bool:
        return Role(checker_role) in SUB_CITY_SCOPED_ROLES

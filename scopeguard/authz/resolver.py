"""
Role Resolver: one effective role per (user, scope).

Precedence (first match wins):
1. Project scope + direct project membership: authoritative, never escalated by a
   higher role held at another level.
2. Organization membership in the tenant owning the scope.
3. Department membership in the relevant department (the project's owning
   department, the department itself, or the best department role for an
   organization-wide scope).
4. Any other membership path in the tenant: the policy's default role (Member).
5. No path at all: AccessDenied.

A Department-Admin therefore resolves to Admin on every project owned by that
department without any project membership rows.
"""

from __future__ import annotations

import logging

from scopeguard.errors import AccessDenied, DenialReason

from .roles import RoleName, Scope, ScopeType
from .store import SqlMembershipStore

logger = logging.getLogger(__name__)


class RoleResolver:
    def __init__(self, store: SqlMembershipStore, default_role: RoleName = RoleName.MEMBER) -> None:
        self._store = store
        self._default_role = default_role

    @property
    def store(self) -> SqlMembershipStore:
        return self._store

    def resolve_role(self, user_id: int, scope: Scope) -> RoleName:
        # Raises NotFound for a missing scope (or one hidden by the tenant filter).
        organization_id = self._store.organization_of(scope.kind, scope.id)

        role, source = self._resolve(user_id, scope, organization_id)
        if role is None:
            logger.info("No membership path user=%s scope=%s", user_id, scope)
            raise AccessDenied(DenialReason.NOT_SCOPED, "You are not a member of this organization")

        logger.debug("Resolved role user=%s scope=%s role=%s via=%s", user_id, scope, role.value, source)
        return role

    def resolve_organization_role(self, user_id: int, organization_id: int) -> RoleName:
        return self.resolve_role(user_id, Scope.organization(organization_id))

    def try_resolve_role(self, user_id: int, scope: Scope) -> RoleName | None:
        """Like resolve_role, but None instead of AccessDenied when there is no path."""
        organization_id = self._store.organization_of(scope.kind, scope.id)
        role, _ = self._resolve(user_id, scope, organization_id)
        return role

    def has_membership_path(self, user_id: int, organization_id: int) -> bool:
        return self._store.has_membership_path(user_id, organization_id)

    def _resolve(self, user_id: int, scope: Scope, organization_id: int) -> tuple[RoleName | None, str]:
        if scope.kind is ScopeType.PROJECT:
            project_role = self._store.get_role(user_id, ScopeType.PROJECT, scope.id)
            if project_role is not None:
                return project_role, "project"

        org_role = self._store.get_role(user_id, ScopeType.ORGANIZATION, organization_id)
        if org_role is not None:
            return org_role, "organization"

        department_role = self._department_role(user_id, scope, organization_id)
        if department_role is not None:
            return department_role, "department"

        if self._store.has_membership_path(user_id, organization_id):
            return self._default_role, "default"

        return None, "none"

    def _department_role(self, user_id: int, scope: Scope, organization_id: int) -> RoleName | None:
        if scope.kind is ScopeType.PROJECT:
            department_id = self._store.project_department_id(scope.id)
            if department_id is None:
                return None
            return self._store.get_role(user_id, ScopeType.DEPARTMENT, department_id)

        if scope.kind is ScopeType.DEPARTMENT:
            return self._store.get_role(user_id, ScopeType.DEPARTMENT, scope.id)

        roles = self._store.department_roles(user_id, organization_id).values()
        # Member beats Viewer on a tie.
        return max(roles, key=lambda r: (r.rank, r is not RoleName.VIEWER), default=None)

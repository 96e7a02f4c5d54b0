"""
Membership Store: per-scope role assignments, read by the Role Resolver.

`MembershipStore` is the contract the core depends on; `SqlMembershipStore` is the
SQLAlchemy implementation over the three membership tables. Writes are limited to
assignment (idempotent upsert), role change and removal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Union

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from scopeguard.db.upsert import insert_ignore
from scopeguard.errors import Internal, NotFound
from scopeguard.models.membership import DepartmentMembership, OrganizationMembership, ProjectMembership
from scopeguard.models.tenancy import Department, Project, ProjectDepartment, Role
from scopeguard.models.workflow import StaleTokenMarker

from .roles import RoleName, ScopeType, normalize_role

logger = logging.getLogger(__name__)

Membership = Union[OrganizationMembership, DepartmentMembership, ProjectMembership]

_MODELS: dict[ScopeType, tuple[type, str]] = {
    ScopeType.ORGANIZATION: (OrganizationMembership, "organization_id"),
    ScopeType.DEPARTMENT: (DepartmentMembership, "department_id"),
    ScopeType.PROJECT: (ProjectMembership, "project_id"),
}


@dataclass(frozen=True)
class MembershipResult:
    membership: Membership
    role: RoleName
    created: bool
    """True only when this call inserted the row (drives scope propagation)."""
    changed: bool = False
    """True when an existing row's role was updated."""


class MembershipStore(Protocol):
    def get_role(self, user_id: int, scope_type: ScopeType, scope_id: int) -> RoleName | None: ...

    def upsert_membership(
        self, user_id: int, scope_type: ScopeType, scope_id: int, role: RoleName
    ) -> MembershipResult: ...


class SqlMembershipStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    @property
    def db(self) -> Session:
        return self._db

    # ---- Roles ------------------------------------------------------------------------

    def role_id(self, role: RoleName) -> int:
        role_id = self._db.scalar(select(Role.id).where(Role.name == role.value))
        if role_id is None:
            raise Internal(f"Role {role.value!r} is not configured")
        return role_id

    # ---- Scope metadata ---------------------------------------------------------------

    def organization_of(self, scope_type: ScopeType, scope_id: int) -> int:
        """Owning organization of a scope instance; NotFound when absent or hidden."""
        if scope_type is ScopeType.ORGANIZATION:
            return scope_id
        if scope_type is ScopeType.DEPARTMENT:
            org_id = self._db.scalar(select(Department.organization_id).where(Department.id == scope_id))
            if org_id is None:
                raise NotFound("Department not found")
            return org_id
        org_id = self._db.scalar(select(Project.organization_id).where(Project.id == scope_id))
        if org_id is None:
            raise NotFound("Project not found")
        return org_id

    def project_department_id(self, project_id: int) -> int | None:
        return self._db.scalar(
            select(ProjectDepartment.department_id).where(ProjectDepartment.project_id == project_id)
        )

    def department_project_ids(self, department_ids: list[int]) -> list[int]:
        if not department_ids:
            return []
        return list(
            self._db.scalars(
                select(ProjectDepartment.project_id).where(ProjectDepartment.department_id.in_(department_ids))
            ).all()
        )

    # ---- Reads ------------------------------------------------------------------------

    def _find(self, user_id: int, scope_type: ScopeType, scope_id: int) -> Membership | None:
        model, column = _MODELS[scope_type]
        stmt = select(model).where(model.user_id == user_id, getattr(model, column) == scope_id)
        return self._db.scalars(stmt).first()

    def get_role(self, user_id: int, scope_type: ScopeType, scope_id: int) -> RoleName | None:
        membership = self._find(user_id, scope_type, scope_id)
        if membership is None:
            return None
        return normalize_role(membership.role.name)

    def department_roles(self, user_id: int, organization_id: int) -> dict[int, RoleName]:
        """Department id -> role, for every department membership of the user in a tenant."""
        stmt = select(DepartmentMembership).where(
            DepartmentMembership.user_id == user_id,
            DepartmentMembership.organization_id == organization_id,
        )
        return {m.department_id: normalize_role(m.role.name) for m in self._db.scalars(stmt).unique().all()}

    def project_roles(self, user_id: int, organization_id: int) -> dict[int, RoleName]:
        stmt = (
            select(ProjectMembership)
            .join(Project, Project.id == ProjectMembership.project_id)
            .where(ProjectMembership.user_id == user_id, Project.organization_id == organization_id)
        )
        return {m.project_id: normalize_role(m.role.name) for m in self._db.scalars(stmt).unique().all()}

    def has_membership_path(self, user_id: int, organization_id: int) -> bool:
        """Any org, department or project membership inside the tenant."""
        if self._find(user_id, ScopeType.ORGANIZATION, organization_id) is not None:
            return True
        if self.department_roles(user_id, organization_id):
            return True
        return bool(self.project_roles(user_id, organization_id))

    def project_member_ids(self, project_id: int) -> list[int]:
        return list(
            self._db.scalars(select(ProjectMembership.user_id).where(ProjectMembership.project_id == project_id)).all()
        )

    # ---- Writes -----------------------------------------------------------------------

    def upsert_membership(
        self, user_id: int, scope_type: ScopeType, scope_id: int, role: RoleName
    ) -> MembershipResult:
        """
        Idempotent assignment.

        - no row: insert (an insert conflict counts as "already satisfied")
        - row with the same role: no-op
        - row with another role: role change
        """

        role_id = self.role_id(role)
        existing = self._find(user_id, scope_type, scope_id)
        if existing is not None:
            return self._apply_role(existing, role, role_id)

        model, column = _MODELS[scope_type]
        values = {"user_id": user_id, column: scope_id, "role_id": role_id}
        if scope_type is ScopeType.DEPARTMENT:
            values["organization_id"] = self.organization_of(ScopeType.DEPARTMENT, scope_id)

        inserted = insert_ignore(self._db, model, values, ["user_id", column])
        membership = self._find(user_id, scope_type, scope_id)
        if membership is None:
            raise Internal("Membership insert failed to materialise")
        if not inserted:
            logger.debug("Membership already present user=%s scope=%s:%s", user_id, scope_type.value, scope_id)
            return MembershipResult(membership, normalize_role(membership.role.name), created=False)

        logger.info("Membership created user=%s scope=%s:%s role=%s", user_id, scope_type.value, scope_id, role.value)
        return MembershipResult(membership, role, created=True)

    def change_role(self, user_id: int, scope_type: ScopeType, scope_id: int, role: RoleName) -> MembershipResult:
        existing = self._find(user_id, scope_type, scope_id)
        if existing is None:
            raise NotFound(f"User is not a member of this {scope_type.value}")
        return self._apply_role(existing, role, self.role_id(role))

    def _apply_role(self, membership: Membership, role: RoleName, role_id: int) -> MembershipResult:
        if membership.role_id == role_id:
            return MembershipResult(membership, role, created=False)
        membership.role_id = role_id
        self._db.flush()
        self._db.refresh(membership)
        logger.info("Membership role changed id=%s role=%s", membership.id, role.value)
        return MembershipResult(membership, role, created=False, changed=True)

    def remove_membership(self, user_id: int, scope_type: ScopeType, scope_id: int) -> bool:
        model, column = _MODELS[scope_type]
        result = self._db.execute(
            delete(model).where(model.user_id == user_id, getattr(model, column) == scope_id)
        )
        return bool(result.rowcount)

    # ---- Stale token markers ----------------------------------------------------------

    def latest_stale_marker_id(self, user_id: int) -> int:
        return self._db.scalar(
            select(func.coalesce(func.max(StaleTokenMarker.id), 0)).where(StaleTokenMarker.user_id == user_id)
        )

    def mark_token_stale(self, user_id: int, reason: str, department_id: int | None = None) -> StaleTokenMarker:
        marker = StaleTokenMarker(user_id=user_id, department_id=department_id, reason=reason)
        self._db.add(marker)
        self._db.flush()
        return marker

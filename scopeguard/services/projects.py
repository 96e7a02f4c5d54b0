from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from scopeguard.authz.evaluator import Target
from scopeguard.authz.policy import Action
from scopeguard.authz.roles import RoleName, Scope, ScopeType
from scopeguard.authz.tokens import TokenClaims, department_role_from_claims
from scopeguard.errors import NotFound
from scopeguard.models.tenancy import Department, Project, ProjectDepartment

from .base import AuthorizedService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepartmentProjects:
    department_id: int
    role: RoleName
    projects: list[Project]
    from_cache: bool
    """True when the role came from the token claims instead of the store."""


class ProjectService(AuthorizedService):
    def list_visible_projects(self, user_id: int, organization_id: int) -> list[Project]:
        """
        Projects the user can see in the tenant.

        - organization Admin: every project
        - department Admin: every project owned by those departments
        - everyone: projects they are personally assigned to
        """

        if self.store.get_role(user_id, ScopeType.ORGANIZATION, organization_id) is RoleName.ADMIN:
            return list(
                self.db.scalars(
                    select(Project).where(Project.organization_id == organization_id).order_by(Project.id)
                ).all()
            )

        admin_departments = [
            department_id
            for department_id, role in self.store.department_roles(user_id, organization_id).items()
            if role is RoleName.ADMIN
        ]
        project_ids = set(self.store.department_project_ids(admin_departments))
        project_ids.update(self.store.project_roles(user_id, organization_id))
        if not project_ids:
            return []

        return list(
            self.db.scalars(
                select(Project)
                .where(Project.organization_id == organization_id, Project.id.in_(project_ids))
                .order_by(Project.id)
            ).all()
        )

    def list_department_projects(self, claims: TokenClaims, department_id: int) -> DepartmentProjects:
        """
        Department-gated read.

        Uses the cached department role from the token when the token is current and
        its active department matches; otherwise resolves fresh. Admins see every
        project owned by the department, others only those they are assigned to.
        """

        user_id = claims.subject
        organization_id = claims.organization_id
        department = self.db.scalars(
            select(Department).where(Department.id == department_id, Department.organization_id == organization_id)
        ).first()
        if department is None:
            raise NotFound("Department not found")

        role = None
        from_cache = False
        if not claims.is_stale(self.store.latest_stale_marker_id(user_id)):
            role = department_role_from_claims(claims, department_id)
            from_cache = role is not None
        if role is None:
            role = self.resolver.resolve_role(user_id, Scope.department(department_id))

        self.evaluator.require(role, Action.READ, Target(actor_id=user_id))

        stmt = (
            select(Project)
            .join(ProjectDepartment, ProjectDepartment.project_id == Project.id)
            .where(ProjectDepartment.department_id == department_id, Project.organization_id == organization_id)
            .order_by(Project.id)
        )
        if role is not RoleName.ADMIN:
            assigned = list(self.store.project_roles(user_id, organization_id))
            stmt = stmt.where(Project.id.in_(assigned))

        projects = list(self.db.scalars(stmt).all())
        logger.debug(
            "Department projects user=%s department=%s role=%s cached=%s count=%s",
            user_id,
            department_id,
            role.value,
            from_cache,
            len(projects),
        )
        return DepartmentProjects(department_id, role, projects, from_cache)

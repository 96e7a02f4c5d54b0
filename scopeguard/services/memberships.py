"""
Membership mutations: project assignment, project role change, removal, and
organization role change.

All of them resolve the actor's role fresh, gate the change through the evaluator,
and treat a repeated identical assignment as already satisfied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from scopeguard.authz.evaluator import Target
from scopeguard.authz.policy import Action
from scopeguard.authz.propagator import PropagationResult
from scopeguard.authz.roles import RoleName, Scope, ScopeType, normalize_role
from scopeguard.authz.store import MembershipResult
from scopeguard.errors import NotFound, ValidationError
from scopeguard.notifications import EntityRef

from .base import AuthorizedService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Assignment:
    user_id: int
    role: str | RoleName = RoleName.MEMBER


@dataclass
class AssignmentResult:
    user_id: int
    role: RoleName
    status: str
    """created | updated | unchanged | skipped"""
    propagation: PropagationResult = field(default_factory=PropagationResult)


class MembershipService(AuthorizedService):
    def assign_to_project(
        self,
        actor_id: int,
        organization_id: int,
        project_id: int,
        assignments: list[Assignment],
        notify: bool = True,
    ) -> list[AssignmentResult]:
        if not assignments:
            raise ValidationError("At least one user is required")

        project = self.get_project(organization_id, project_id)
        actor_role = self.project_role(actor_id, project_id)
        actor_in_scope = self.is_assigned_to_project(actor_id, project_id)

        results: list[AssignmentResult] = []
        for assignment in assignments:
            role = normalize_role(assignment.role)
            self.get_user(assignment.user_id)

            if assignment.user_id != actor_id and not self.store.has_membership_path(
                assignment.user_id, organization_id
            ):
                logger.info(
                    "Assignment skipped: user=%s has no membership in org=%s", assignment.user_id, organization_id
                )
                results.append(AssignmentResult(assignment.user_id, role, "skipped"))
                continue

            current = self.store.get_role(assignment.user_id, ScopeType.PROJECT, project_id)
            if current is not None and current is not role:
                self.evaluator.require(
                    actor_role,
                    Action.CHANGE_ROLE,
                    Target(
                        actor_id=actor_id,
                        owner_id=assignment.user_id,
                        owner_role=current,
                        requested_role=role,
                        actor_in_scope=actor_in_scope,
                    ),
                )
                self.store.change_role(assignment.user_id, ScopeType.PROJECT, project_id, role)
                results.append(AssignmentResult(assignment.user_id, role, "updated"))
                continue

            self.evaluator.require(
                actor_role,
                Action.ASSIGN_MEMBER,
                Target(
                    actor_id=actor_id,
                    owner_id=assignment.user_id,
                    requested_role=role,
                    actor_in_scope=actor_in_scope,
                ),
            )
            if current is role:
                results.append(AssignmentResult(assignment.user_id, role, "unchanged"))
                continue

            created, propagation = self.add_project_member(assignment.user_id, project_id, role)
            status = "created" if created else "unchanged"
            results.append(AssignmentResult(assignment.user_id, role, status, propagation))

        if all(r.status == "skipped" for r in results):
            self.db.rollback()
            raise ValidationError("None of the users belong to this organization")

        self.db.commit()
        logger.info(
            "Project assignment project=%s actor=%s results=%s",
            project_id,
            actor_id,
            {r.user_id: r.status for r in results},
        )

        if notify:
            project_name = project.name
            for result in results:
                if result.status != "created":
                    continue
                message = f"You have been added to project {project_name} as {result.role.value}."
                self.notify(result.user_id, "Added to Project", message, EntityRef("project", project_id))
                self.send_email(result.user_id, f"Added to project {project_name}", message)

        return results

    def change_project_role(
        self,
        actor_id: int,
        organization_id: int,
        project_id: int,
        user_id: int,
        role: str | RoleName,
    ) -> MembershipResult:
        new_role = normalize_role(role)
        self.get_project(organization_id, project_id)

        current = self.store.get_role(user_id, ScopeType.PROJECT, project_id)
        if current is None and user_id != actor_id:
            raise NotFound("User is not assigned to this project")

        actor_role = self.project_role(actor_id, project_id)
        self.evaluator.require(
            actor_role,
            Action.CHANGE_ROLE,
            Target(
                actor_id=actor_id,
                owner_id=user_id,
                owner_role=current,
                requested_role=new_role,
                actor_in_scope=self.is_assigned_to_project(actor_id, project_id),
            ),
        )

        result = self.store.change_role(user_id, ScopeType.PROJECT, project_id, new_role)
        self.db.commit()
        return result

    def remove_from_project(self, actor_id: int, organization_id: int, project_id: int, user_id: int) -> None:
        self.get_project(organization_id, project_id)

        current = self.store.get_role(user_id, ScopeType.PROJECT, project_id)
        if current is None and user_id != actor_id:
            raise NotFound("User is not assigned to this project")

        actor_role = self.project_role(actor_id, project_id)
        self.evaluator.require(
            actor_role,
            Action.REMOVE_MEMBER,
            Target(
                actor_id=actor_id,
                owner_id=user_id,
                owner_role=current,
                actor_in_scope=self.is_assigned_to_project(actor_id, project_id),
            ),
        )

        self.store.remove_membership(user_id, ScopeType.PROJECT, project_id)
        self.db.commit()
        logger.info("Removed user=%s from project=%s by actor=%s", user_id, project_id, actor_id)

    def change_organization_role(
        self,
        actor_id: int,
        organization_id: int,
        user_id: int,
        role: str | RoleName,
    ) -> MembershipResult:
        """
        Set a user's organization-level role.

        The target must already belong to the tenant. Their token claims become
        stale, so a marker is written for them.
        """

        new_role = normalize_role(role)
        scope = Scope.organization(organization_id)

        actor_role = self.resolver.resolve_role(actor_id, scope)
        current = self.resolver.try_resolve_role(user_id, scope)
        if current is None and user_id != actor_id:
            raise NotFound("User is not a member of this organization")

        self.evaluator.require(
            actor_role,
            Action.CHANGE_ROLE,
            Target(
                actor_id=actor_id,
                owner_id=user_id,
                owner_role=current,
                requested_role=new_role,
                actor_in_scope=self.store.get_role(actor_id, ScopeType.ORGANIZATION, organization_id) is not None,
            ),
        )

        result = self.store.upsert_membership(user_id, ScopeType.ORGANIZATION, organization_id, new_role)
        if result.created or result.changed:
            self.store.mark_token_stale(user_id, "organization role changed")
        self.db.commit()
        logger.info(
            "Organization role user=%s org=%s role=%s actor=%s", user_id, organization_id, new_role.value, actor_id
        )
        return result

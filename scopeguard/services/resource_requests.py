"""
Resource Request Workflow.

    pending --approve--> approved   (terminal)
    pending --reject---> rejected   (terminal)

The transition is a single conditional UPDATE guarded by `status = 'pending'`, so
of two concurrent reviewers exactly one wins and the other gets a Conflict that
carries the status the winner wrote. Approval side effects that are part of the
decision (sharing record, project membership, scope propagation) commit together
with the status; the notification and the email are sent afterwards and may fail
without affecting the response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import select, update

from scopeguard.authz.evaluator import Target
from scopeguard.authz.policy import Action
from scopeguard.authz.propagator import PropagationResult
from scopeguard.authz.roles import RoleName, Scope, ScopeType, normalize_role
from scopeguard.db.base import utcnow
from scopeguard.db.upsert import insert_ignore
from scopeguard.errors import Conflict, NotFound, ValidationError
from scopeguard.models.tenancy import Department, Project, SharedProject
from scopeguard.models.workflow import ResourceRequest
from scopeguard.notifications import EntityRef

from .base import AuthorizedService

logger = logging.getLogger(__name__)


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


_REVIEW_ACTIONS = {
    "approve": RequestStatus.APPROVED,
    "approved": RequestStatus.APPROVED,
    "reject": RequestStatus.REJECTED,
    "rejected": RequestStatus.REJECTED,
}


def parse_review_action(value: str) -> RequestStatus:
    try:
        return _REVIEW_ACTIONS[(value or "").strip().lower()]
    except KeyError:
        raise ValidationError("Invalid action. Must be 'approve' or 'reject'") from None


@dataclass(frozen=True)
class RequestEntry:
    user_id: int
    department_id: int
    message: str | None = None
    requested_role: str | None = None


@dataclass
class ReviewOutcome:
    request: ResourceRequest
    status: RequestStatus
    membership_created: bool = False
    sharing_created: bool = False
    propagation: PropagationResult = field(default_factory=PropagationResult)
    notified: bool = False
    emailed: bool = False


class ResourceRequestWorkflow(AuthorizedService):
    # ---- Submit ------------------------------------------------------------------------

    def submit(
        self,
        requester_id: int,
        organization_id: int,
        project_id: int,
        entries: list[RequestEntry],
    ) -> list[ResourceRequest]:
        if not entries:
            raise ValidationError("At least one request is required")

        self.get_project(organization_id, project_id)
        requester_role = self.project_role(requester_id, project_id)
        self.evaluator.require(requester_role, Action.SUBMIT_REQUEST, Target(actor_id=requester_id))

        created: list[ResourceRequest] = []
        seen: set[int] = set()
        for entry in entries:
            if entry.user_id in seen:
                raise ValidationError(f"Duplicate request for user {entry.user_id}")
            seen.add(entry.user_id)

            self.get_user(entry.user_id)
            self._require_department(organization_id, entry.department_id)
            if self.store.get_role(entry.user_id, ScopeType.DEPARTMENT, entry.department_id) is None:
                raise ValidationError(f"User {entry.user_id} is not a member of department {entry.department_id}")
            if self.is_assigned_to_project(entry.user_id, project_id):
                raise Conflict(f"User {entry.user_id} is already a member of this project")
            if self._pending_for(project_id, entry.user_id) is not None:
                raise Conflict(
                    f"A pending request already exists for user {entry.user_id}", RequestStatus.PENDING.value
                )

            requested_role_id = None
            if entry.requested_role:
                role = normalize_role(entry.requested_role)
                requested_role_id = self.store.role_id(role)

            request = ResourceRequest(
                project_id=project_id,
                requested_user_id=entry.user_id,
                requester_id=requester_id,
                user_department_id=entry.department_id,
                requested_role_id=requested_role_id,
                message=entry.message,
                status=RequestStatus.PENDING.value,
            )
            self.db.add(request)
            created.append(request)

        self.db.commit()
        logger.info(
            "Resource requests submitted project=%s requester=%s count=%s", project_id, requester_id, len(created)
        )
        return created

    # ---- Read --------------------------------------------------------------------------

    def get(self, organization_id: int, request_id: int) -> ResourceRequest:
        request = self.db.scalars(
            select(ResourceRequest)
            .join(Project, Project.id == ResourceRequest.project_id)
            .where(ResourceRequest.id == request_id, Project.organization_id == organization_id)
        ).first()
        if request is None:
            raise NotFound("Request not found")
        return request

    def list_pending(self, reviewer_id: int, organization_id: int) -> list[ResourceRequest]:
        """Pending requests in the tenant that this reviewer is allowed to review."""
        candidates = self.db.scalars(
            select(ResourceRequest)
            .join(Project, Project.id == ResourceRequest.project_id)
            .where(
                Project.organization_id == organization_id,
                ResourceRequest.status == RequestStatus.PENDING.value,
            )
            .order_by(ResourceRequest.created_at.desc(), ResourceRequest.id.desc())
        ).all()

        roles: dict[int, RoleName | None] = {}
        visible: list[ResourceRequest] = []
        for request in candidates:
            if request.project_id not in roles:
                roles[request.project_id] = self.resolver.try_resolve_role(
                    reviewer_id, Scope.project(request.project_id)
                )
            role = roles[request.project_id]
            if role is None:
                continue
            target = self._review_target(reviewer_id, request)
            decision = self.evaluator.can_perform(role, Action.MANAGE_MEMBERSHIP, target)
            if decision:
                visible.append(request)
        return visible

    # ---- Review ------------------------------------------------------------------------

    def review(
        self,
        reviewer_id: int,
        organization_id: int,
        request_id: int,
        action: str,
        notes: str | None = None,
    ) -> ReviewOutcome:
        new_status = parse_review_action(action)
        request = self.get(organization_id, request_id)

        # Only reviewers may learn the outcome of a processed request.
        reviewer_role = self.project_role(reviewer_id, request.project_id)
        self.evaluator.require(reviewer_role, Action.MANAGE_MEMBERSHIP, self._review_target(reviewer_id, request))

        if request.status != RequestStatus.PENDING.value:
            raise Conflict(f"Request has already been {request.status}", request.status)

        if not self.transition(request_id, new_status, reviewer_id, notes):
            self.db.rollback()
            current = self.db.scalar(select(ResourceRequest.status).where(ResourceRequest.id == request_id))
            logger.info("Review lost race request=%s current=%s", request_id, current)
            raise Conflict(f"Request has already been {current}", current)

        outcome = ReviewOutcome(request=request, status=new_status)
        if new_status is RequestStatus.APPROVED:
            outcome.sharing_created = insert_ignore(
                self.db,
                SharedProject,
                {
                    "project_id": request.project_id,
                    "department_id": request.user_department_id,
                    "shared_by": reviewer_id,
                },
                ["project_id", "department_id"],
            )
            if not self.is_assigned_to_project(request.requested_user_id, request.project_id):
                outcome.membership_created, outcome.propagation = self.add_project_member(
                    request.requested_user_id, request.project_id, RoleName.MEMBER
                )

        self.db.commit()
        self.db.refresh(request)
        logger.info(
            "Resource request %s request=%s reviewer=%s membership_created=%s",
            new_status.value,
            request_id,
            reviewer_id,
            outcome.membership_created,
        )

        outcome.notified, outcome.emailed = self._announce(request, new_status)
        return outcome

    def transition(self, request_id: int, new_status: RequestStatus, reviewer_id: int, notes: str | None) -> bool:
        """
        Compare-and-set from pending. Returns False when another reviewer got there first.

        Does not commit.
        """
        now = utcnow()
        result = self.db.execute(
            update(ResourceRequest)
            .where(ResourceRequest.id == request_id, ResourceRequest.status == RequestStatus.PENDING.value)
            .values(
                status=new_status.value,
                reviewed_by=reviewer_id,
                review_notes=notes,
                reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ---- Helpers -----------------------------------------------------------------------

    def _review_target(self, reviewer_id: int, request: ResourceRequest) -> Target:
        return Target(
            actor_id=reviewer_id,
            owner_id=request.requested_user_id,
            actor_in_scope=self.is_assigned_to_project(reviewer_id, request.project_id),
        )

    def _pending_for(self, project_id: int, user_id: int) -> ResourceRequest | None:
        return self.db.scalars(
            select(ResourceRequest).where(
                ResourceRequest.project_id == project_id,
                ResourceRequest.requested_user_id == user_id,
                ResourceRequest.status == RequestStatus.PENDING.value,
            )
        ).first()

    def _require_department(self, organization_id: int, department_id: int) -> Department:
        department = self.db.scalars(
            select(Department).where(Department.id == department_id, Department.organization_id == organization_id)
        ).first()
        if department is None:
            raise NotFound("Department not found")
        return department

    def _announce(self, request: ResourceRequest, status: RequestStatus) -> tuple[bool, bool]:
        project_name = self.db.scalar(select(Project.name).where(Project.id == request.project_id)) or "the project"
        ref = EntityRef("project", request.project_id)

        if status is RequestStatus.APPROVED:
            title = "Project Access Approved"
            message = f"Your access request for project {project_name} has been approved."
            notification_type = "success"
        else:
            title = "Project Access Rejected"
            message = f"Your access request for project {project_name} has been rejected."
            notification_type = "error"
        if request.review_notes:
            message = f"{message} Notes: {request.review_notes}"

        notified = self.notify(request.requested_user_id, title, message, ref, notification_type)
        emailed = self.send_email(request.requested_user_id, title, message)
        return notified, emailed


from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scopeguard.authz.evaluator import PermissionEvaluator
from scopeguard.authz.policy import Policy
from scopeguard.authz.propagator import PropagationResult, ScopePropagator
from scopeguard.authz.resolver import RoleResolver
from scopeguard.authz.roles import RoleName, Scope, ScopeType
from scopeguard.authz.store import SqlMembershipStore
from scopeguard.errors import NotFound
from scopeguard.models.tenancy import Project, User
from scopeguard.notifications import EmailSink, EntityRef, LoggingEmailSink, SqlNotificationSink

logger = logging.getLogger(__name__)


class AuthorizedService:
    """
    Shared wiring for the services behind the HTTP handlers.

    Every mutation resolves the actor's role fresh from the membership store
    (never from token claims) and gates it through the evaluator.
    """

    def __init__(self, db: Session, policy: Policy, email: EmailSink | None = None) -> None:
        self.db = db
        self.policy = policy
        self.store = SqlMembershipStore(db)
        self.resolver = RoleResolver(self.store, policy.default_role)
        self.evaluator = PermissionEvaluator(policy)
        self.notifications = SqlNotificationSink(db)
        self.email = email or LoggingEmailSink()
        self.propagator = ScopePropagator(self.store, self.notifications)

    # ---- Lookups (tenant mismatch is NotFound) ---------------------------------------

    def get_project(self, organization_id: int, project_id: int) -> Project:
        project = self.db.scalars(
            select(Project).where(Project.id == project_id, Project.organization_id == organization_id)
        ).first()
        if project is None:
            raise NotFound("Project not found")
        return project

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFound("User not found")
        return user

    def project_role(self, user_id: int, project_id: int) -> RoleName:
        return self.resolver.resolve_role(user_id, Scope.project(project_id))

    def is_assigned_to_project(self, user_id: int, project_id: int) -> bool:
        return self.store.get_role(user_id, ScopeType.PROJECT, project_id) is not None

    def add_project_member(self, user_id: int, project_id: int, role: RoleName) -> tuple[bool, PropagationResult]:
        """Upsert the project membership; propagate only when a row was inserted."""
        result = self.store.upsert_membership(user_id, ScopeType.PROJECT, project_id, role)
        if not result.created:
            return False, PropagationResult()
        return True, self.propagator.on_project_membership_created(user_id, project_id)

    # ---- Best-effort side effects ----------------------------------------------------

    def notify(
        self,
        user_id: int,
        title: str,
        message: str,
        entity_ref: EntityRef | None = None,
        notification_type: str = "info",
    ) -> bool:
        """Create and commit one notification; failures are logged, never raised."""
        try:
            self.notifications.send(user_id, title, message, entity_ref, type=notification_type)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Notification failed user=%s title=%r: %s", user_id, title, type(e).__name__)
            return False
        return True

    def send_email(self, user_id: int, subject: str, body: str) -> bool:
        try:
            user = self.db.get(User, user_id)
            if user is None:
                logger.warning("Email skipped: unknown user=%s", user_id)
                return False
            return self.email.send(user.email, subject, body)
        except Exception as e:
            # Sinks are third-party code; nothing they raise may fail the request.
            logger.warning("Email failed user=%s subject=%r: %s", user_id, subject, type(e).__name__)
            return False

"""
Scope Propagator.

Runs once after a project membership row is actually inserted (never on role
changes or repeated assignments). Keeps department membership consistent with
project membership and tells the user their current token is missing the new
department.

Every step is best-effort: a failure is logged and the remaining steps are
skipped or continued, but the triggering project membership is never rolled back.
Writes happen inside SAVEPOINTs so a failed step leaves the outer transaction
usable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from scopeguard.errors import ScopeguardError
from scopeguard.notifications import EntityRef, NotificationSink

from .roles import RoleName, ScopeType
from .store import SqlMembershipStore

logger = logging.getLogger(__name__)

STALE_TOKEN_TITLE = "New Department Access"


@dataclass(frozen=True)
class PropagationResult:
    department_id: int | None = None
    department_membership_created: bool = False
    token_marked_stale: bool = False
    notified: bool = False


class ScopePropagator:
    def __init__(self, store: SqlMembershipStore, notifications: NotificationSink) -> None:
        self._store = store
        self._notifications = notifications

    def on_project_membership_created(self, user_id: int, project_id: int) -> PropagationResult:
        db = self._store.db

        try:
            department_id = self._store.project_department_id(project_id)
        except SQLAlchemyError as e:
            logger.warning("Propagation: department lookup failed project=%s: %s", project_id, type(e).__name__)
            return PropagationResult()

        if department_id is None:
            return PropagationResult()

        if self._store.get_role(user_id, ScopeType.DEPARTMENT, department_id) is not None:
            logger.debug("Propagation: user=%s already in department=%s", user_id, department_id)
            return PropagationResult(department_id=department_id)

        try:
            with db.begin_nested():
                result = self._store.upsert_membership(user_id, ScopeType.DEPARTMENT, department_id, RoleName.MEMBER)
        except (ScopeguardError, SQLAlchemyError) as e:
            logger.warning(
                "Propagation: department membership failed user=%s department=%s: %s",
                user_id,
                department_id,
                type(e).__name__,
            )
            return PropagationResult(department_id=department_id)

        if not result.created:
            return PropagationResult(department_id=department_id)

        logger.info("Propagation: user=%s added to department=%s as Member", user_id, department_id)

        marked = False
        try:
            with db.begin_nested():
                self._store.mark_token_stale(user_id, "department membership added", department_id)
            marked = True
        except SQLAlchemyError as e:
            logger.warning("Propagation: stale marker failed user=%s: %s", user_id, type(e).__name__)

        notified = False
        try:
            with db.begin_nested():
                self._notifications.send(
                    user_id,
                    STALE_TOKEN_TITLE,
                    "You now have access to a new department through a project assignment. "
                    "Refresh your session to see it.",
                    EntityRef("department", department_id),
                    type="stale_token",
                )
            notified = True
        except SQLAlchemyError as e:
            logger.warning("Propagation: notification failed user=%s: %s", user_id, type(e).__name__)

        return PropagationResult(
            department_id=department_id,
            department_membership_created=True,
            token_marked_stale=marked,
            notified=notified,
        )

"""
Permission Evaluator.

A pure decision function `(actor_role, action, target?) -> Decision`, consumed
uniformly by every service. No storage access: callers resolve the actor's role
(and the target owner's role, when there is one) before asking.

Evaluation order:
1. Self rule: nobody modifies or removes their own role/membership entry, Admins
   included.
2. Admin may do everything else.
3. Granting Admin requires Admin.
4. The role's capabilities (config/policy.yaml) must include the action.
5. Membership management is confined to projects the actor is personally
   assigned to, and a non-Admin only grants roles strictly below their own.
6. Ownership: authors act on their own resources; Admin-owned targets and targets
   at or above the actor's tier are protected.
7. Private documents are readable by their author only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from scopeguard.errors import AccessDenied, DenialReason

from .policy import Action, Policy
from .roles import RoleName, can_assign_role

logger = logging.getLogger(__name__)


MEMBERSHIP_ACTIONS = frozenset(
    {
        Action.ASSIGN_MEMBER,
        Action.REMOVE_MEMBER,
        Action.CHANGE_ROLE,
        Action.MANAGE_MEMBERSHIP,
        Action.REVIEW_REQUEST,
        Action.ASSIGN_ADMIN_ROLE,
    }
)

OWNERSHIP_ACTIONS = frozenset({Action.UPDATE, Action.DELETE, Action.CHANGE_ROLE, Action.REMOVE_MEMBER})


@dataclass(frozen=True)
class Target:
    """
    What the action is applied to. Every field is optional.

    owner_id / owner_role: author of a resource, or the user whose membership is
    being changed. owner_role is the owner's *current* role in the same scope.
    requested_role: role being granted by an assignment or role change.
    actor_in_scope: whether the actor is personally assigned to the project.
    """

    actor_id: int | None = None
    owner_id: int | None = None
    owner_role: RoleName | None = None
    requested_role: RoleName | None = None
    actor_in_scope: bool = True
    visibility: str | None = None
    is_public: bool = False

    @property
    def is_self(self) -> bool:
        return self.actor_id is not None and self.actor_id == self.owner_id


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    category: DenialReason | None = None

    @classmethod
    def allow(cls, reason: str) -> Decision:
        return cls(True, reason)

    @classmethod
    def deny(cls, category: DenialReason, reason: str | None = None) -> Decision:
        return cls(False, reason or category.message, category)

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise AccessDenied(self.category or DenialReason.INSUFFICIENT_ROLE, self.reason)


class PermissionEvaluator:
    def __init__(self, policy: Policy) -> None:
        self._policy = policy

    @property
    def policy(self) -> Policy:
        return self._policy

    def can_perform(self, actor_role: RoleName, action: Action, target: Target | None = None) -> Decision:
        decision = self._evaluate(actor_role, Action(action), target or Target())
        if decision.allowed:
            logger.debug("authz: allowed role=%s action=%s reason=%s", actor_role.value, action.value, decision.reason)
        else:
            logger.debug(
                "authz: denied role=%s action=%s category=%s reason=%s",
                actor_role.value,
                action.value,
                decision.category.value if decision.category else None,
                decision.reason,
            )
        return decision

    def require(self, actor_role: RoleName, action: Action, target: Target | None = None) -> Decision:
        """Like can_perform, but raises AccessDenied on denial."""
        decision = self.can_perform(actor_role, action, target)
        decision.raise_for_denial()
        return decision

    def _evaluate(self, actor_role: RoleName, action: Action, target: Target) -> Decision:
        if action is Action.MODIFY_SELF or (action in MEMBERSHIP_ACTIONS and target.is_self):
            return Decision.deny(DenialReason.SELF_MODIFICATION)

        if actor_role is RoleName.ADMIN:
            return Decision.allow("Admin may perform every action")

        if action is Action.ASSIGN_ADMIN_ROLE or target.requested_role is RoleName.ADMIN:
            return Decision.deny(DenialReason.INSUFFICIENT_ROLE, "Only Admins can assign the Admin role")

        if not self._policy.allows(actor_role, action):
            return Decision.deny(
                DenialReason.INSUFFICIENT_ROLE,
                f"{actor_role.value} is not allowed to {action.value}",
            )

        if action in MEMBERSHIP_ACTIONS:
            if not target.actor_in_scope:
                return Decision.deny(
                    DenialReason.NOT_SCOPED,
                    f"{actor_role.value} can only manage members of projects they are assigned to",
                )
            if target.requested_role is not None and not can_assign_role(actor_role, target.requested_role):
                return Decision.deny(
                    DenialReason.INSUFFICIENT_ROLE,
                    f"{actor_role.value} cannot assign the {target.requested_role.value} role",
                )

        if action in OWNERSHIP_ACTIONS and (target.owner_id is not None or target.owner_role is not None):
            if target.is_self:
                return Decision.allow("Actor owns the resource")
            owner_role = target.owner_role or self._policy.default_role
            if owner_role is RoleName.ADMIN:
                return Decision.deny(DenialReason.TARGET_PROTECTED, "Resources owned by an Admin are protected")
            if actor_role.rank < RoleName.MANAGER.rank:
                return Decision.deny(
                    DenialReason.INSUFFICIENT_ROLE,
                    f"{actor_role.value} can only {action.value} their own resources",
                )
            if owner_role.rank >= actor_role.rank:
                return Decision.deny(
                    DenialReason.TARGET_PROTECTED,
                    f"{actor_role.value} cannot {action.value} resources owned by a {owner_role.value}",
                )
            return Decision.allow(f"{actor_role.value} outranks {owner_role.value}")

        if action is Action.READ and target.visibility == "private" and not target.is_public:
            if target.owner_id is not None and not target.is_self:
                return Decision.deny(DenialReason.NOT_SCOPED, "Document is private to its author")

        return Decision.allow(f"{actor_role.value} may {action.value}")

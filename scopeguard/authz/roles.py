"""
Role enumeration, role hierarchy and scope identifiers.

Roles are global (not per tenant) but assigned per scope. The hierarchy is
Admin > Manager > {Member, Viewer}; Member and Viewer share a tier for mutation
purposes, they only differ in capabilities (see config/policy.yaml).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from scopeguard.errors import ValidationError


class RoleName(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    MEMBER = "Member"
    VIEWER = "Viewer"

    @property
    def rank(self) -> int:
        return ROLE_RANKS[self]


ROLE_RANKS: dict[RoleName, int] = {
    RoleName.ADMIN: 3,
    RoleName.MANAGER: 2,
    RoleName.MEMBER: 1,
    RoleName.VIEWER: 1,
}

_ALIASES: dict[str, RoleName] = {
    "admin": RoleName.ADMIN,
    "administrator": RoleName.ADMIN,
    "super admin": RoleName.ADMIN,
    "superadmin": RoleName.ADMIN,
    "manager": RoleName.MANAGER,
    "project manager": RoleName.MANAGER,
    "team lead": RoleName.MANAGER,
    "technical lead": RoleName.MANAGER,
    "lead": RoleName.MANAGER,
    "member": RoleName.MEMBER,
    "user": RoleName.MEMBER,
    "developer": RoleName.MEMBER,
    "employee": RoleName.MEMBER,
    "staff": RoleName.MEMBER,
    "viewer": RoleName.VIEWER,
    "guest": RoleName.VIEWER,
    "read-only": RoleName.VIEWER,
}


def normalize_role(value: str | RoleName) -> RoleName:
    """
    Map a stored or user-supplied role name onto the fixed enumeration.

    Matching is case-insensitive and accepts the legacy aliases. Unknown names are
    a ValidationError, never silently widened to another role.
    """

    if isinstance(value, RoleName):
        return value
    key = (value or "").strip().lower()
    try:
        return _ALIASES[key]
    except KeyError:
        raise ValidationError(f"Invalid role: {value!r}") from None


def can_assign_role(actor: RoleName, role: RoleName) -> bool:
    """Only Admin grants Admin; otherwise a role may only grant roles strictly below it."""
    if role is RoleName.ADMIN:
        return actor is RoleName.ADMIN
    if actor is RoleName.ADMIN:
        return True
    return actor.rank > role.rank


def can_modify_role(actor: RoleName, target: RoleName) -> bool:
    """Whether `actor` may change or remove an entry currently holding `target`."""
    if target is RoleName.ADMIN:
        return actor is RoleName.ADMIN
    return actor is RoleName.ADMIN or actor.rank > target.rank


def assignable_roles(actor: RoleName) -> list[RoleName]:
    return [role for role in RoleName if can_assign_role(actor, role)]


class ScopeType(str, Enum):
    ORGANIZATION = "organization"
    DEPARTMENT = "department"
    PROJECT = "project"


@dataclass(frozen=True)
class Scope:
    """A scope instance a role is assigned against and resolved for."""

    kind: ScopeType
    id: int

    @classmethod
    def organization(cls, organization_id: int) -> Scope:
        return cls(ScopeType.ORGANIZATION, organization_id)

    @classmethod
    def department(cls, department_id: int) -> Scope:
        return cls(ScopeType.DEPARTMENT, department_id)

    @classmethod
    def project(cls, project_id: int) -> Scope:
        return cls(ScopeType.PROJECT, project_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

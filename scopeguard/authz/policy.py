"""
Authorization policy: YAML loader and capability engine.

Key ideas:
- Load YAML once at startup (auth header settings, public routes, default role,
  role -> action capabilities).
- Resolve role inheritance (extends) and detect cycles.
- Precompute effective actions per role.
- At runtime, answer:
    is_public(method, path)?
    allows(role, action)?

This module is pure Python and has no FastAPI dependency. Ownership and scoping
rules live in authz/evaluator.py on top of the capabilities computed here.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .roles import RoleName

logger = logging.getLogger(__name__)


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN_MEMBER = "assignMember"
    REMOVE_MEMBER = "removeMember"
    CHANGE_ROLE = "changeRole"
    ASSIGN_ADMIN_ROLE = "assignAdminRole"
    MANAGE_MEMBERSHIP = "manageMembership"
    REVIEW_REQUEST = "reviewRequest"
    SUBMIT_REQUEST = "submitRequest"
    MODIFY_SELF = "modifySelf"


# ---- Config models -------------------------------------------------------------------


class AuthConfig(BaseModel):
    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"


class PublicRule(BaseModel):
    path: str
    methods: list[str] = Field(default_factory=lambda: ["GET"])

    def normalized_methods(self) -> frozenset[str]:
        return frozenset(m.upper() for m in self.methods)


class RoleDefModel(BaseModel):
    extends: str | None = None
    permissions: list[str] = Field(default_factory=list)
    description: str | None = None


class PolicyConfigModel(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    public: list[PublicRule] = Field(default_factory=list)
    default_role: str = RoleName.MEMBER.value
    roles: dict[str, RoleDefModel] = Field(default_factory=dict)


class PolicyConfigError(ValueError):
    """Raised when the policy YAML is invalid."""


# ---- Helpers -------------------------------------------------------------------------


_PATH_PARAM_RE = re.compile(r"\{[^/]+\}")


def _path_template_to_regex(path_template: str) -> re.Pattern[str]:
    """
    Convert a simple path template into a compiled regex.

    Example:
        /projects/{id}  ->  ^/projects/[^/]+$
    """

    regex = _PATH_PARAM_RE.sub(r"[^/]+", path_template)
    return re.compile(rf"^{regex}$")


def _parse_role(name: str, where: str) -> RoleName:
    try:
        return RoleName(name)
    except ValueError:
        raise PolicyConfigError(f"{where}: unknown role {name!r}") from None


def _parse_actions(names: Iterable[str], role_name: str) -> frozenset[Action]:
    actions: set[Action] = set()
    for name in names:
        try:
            actions.add(Action(str(name)))
        except ValueError:
            raise PolicyConfigError(f"role {role_name!r} references unknown action {name!r}") from None
    return frozenset(actions)


# ---- Loader and inheritance resolution ----------------------------------------------


def _compute_effective_actions(roles: Mapping[str, RoleDefModel]) -> dict[RoleName, frozenset[Action]]:
    """
    Resolve role inheritance and compute effective actions per role.

    Detect cycles in extends and raise PolicyConfigError if found.
    """

    effective: dict[str, frozenset[Action]] = {}
    visiting: set[str] = set()

    def dfs(role_name: str) -> frozenset[Action]:
        if role_name in effective:
            return effective[role_name]
        if role_name in visiting:
            raise PolicyConfigError(f"cycle detected in role inheritance at {role_name!r}")
        visiting.add(role_name)
        role = roles[role_name]
        actions = set(_parse_actions(role.permissions, role_name))
        if role.extends:
            actions.update(dfs(role.extends))
        result = frozenset(actions)
        effective[role_name] = result
        visiting.remove(role_name)
        return result

    for name in roles.keys():
        dfs(name)

    return {RoleName(name): actions for name, actions in effective.items()}


def parse_policy(raw: Mapping[str, Any], source: str = "<policy>") -> Policy:
    if "policy" not in raw:
        raise PolicyConfigError(f"Missing top-level 'policy' key in config: {source}")

    try:
        model = PolicyConfigModel.model_validate(raw["policy"])
    except PydanticValidationError as exc:
        raise PolicyConfigError(f"Invalid policy config {source}: {exc}") from exc

    declared = {_parse_role(name, "roles") for name in model.roles}
    missing = set(RoleName) - declared
    if missing:
        raise PolicyConfigError(f"policy must declare every role; missing {sorted(r.value for r in missing)}")

    for name, role in model.roles.items():
        if role.extends is not None and role.extends not in model.roles:
            raise PolicyConfigError(f"role {name!r} extends unknown role {role.extends!r}")

    default_role = _parse_role(model.default_role, "default_role")
    effective = _compute_effective_actions(model.roles)
    return Policy(model, effective, default_role)


def load_policy_config(path: Path) -> Policy:
    """
    Load and validate the policy YAML from disk.

    Expected shape (simplified):

        policy:
          auth:
            authorization_header: Authorization
            bearer_prefix: Bearer
          public:
            - path: /health
              methods: [GET]
          default_role: Member
          roles:
            Viewer:
              permissions: [read]
            Member:
              extends: Viewer
              permissions: [create, update, delete]
    """

    raw_text = path.read_text(encoding="utf-8")
    raw = yaml.safe_load(raw_text) or {}
    if not isinstance(raw, dict):
        raise PolicyConfigError(f"policy config must be a mapping: {path}")
    return parse_policy(raw, source=str(path))


# ---- Policy engine -------------------------------------------------------------------


class Policy:
    """
    In-memory policy built from a validated config.

    Usage:
        policy = load_policy_config(Path("config/policy.yaml"))
        policy.allows(RoleName.MANAGER, Action.REVIEW_REQUEST)
    """

    def __init__(
        self,
        model: PolicyConfigModel,
        effective_actions: Mapping[RoleName, frozenset[Action]],
        default_role: RoleName,
    ) -> None:
        self.model = model
        self._effective_actions = dict(effective_actions)
        self._default_role = default_role
        self._public_patterns = [
            (_path_template_to_regex(rule.path), rule.normalized_methods()) for rule in model.public
        ]

    @classmethod
    def from_yaml(cls, path: Path) -> Policy:
        return load_policy_config(path)

    @property
    def auth(self) -> AuthConfig:
        return self.model.auth

    @property
    def default_role(self) -> RoleName:
        """Role given to a tenant member with no explicit role for the scope."""
        return self._default_role

    @property
    def effective_actions(self) -> Mapping[RoleName, frozenset[Action]]:
        return dict(self._effective_actions)

    def is_public(self, method: str, path: str) -> bool:
        method = method.upper()
        for regex, methods in self._public_patterns:
            if method in methods and regex.match(path):
                return True
        return False

    def allows(self, role: RoleName, action: Action) -> bool:
        return action in self._effective_actions.get(role, frozenset())

"""Authorization core: roles, policy, store, resolver, evaluator, propagator, tokens."""

from .evaluator import Decision, PermissionEvaluator, Target
from .policy import Action, Policy, PolicyConfigError, load_policy_config
from .propagator import PropagationResult, ScopePropagator
from .resolver import RoleResolver
from .roles import RoleName, Scope, ScopeType
from .store import MembershipResult, MembershipStore, SqlMembershipStore

__all__ = [
    "Action",
    "Decision",
    "MembershipResult",
    "MembershipStore",
    "PermissionEvaluator",
    "Policy",
    "PolicyConfigError",
    "PropagationResult",
    "RoleName",
    "RoleResolver",
    "Scope",
    "ScopeType",
    "ScopePropagator",
    "SqlMembershipStore",
    "Target",
    "load_policy_config",
]

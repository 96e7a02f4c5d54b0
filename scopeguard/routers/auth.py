from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from scopeguard.authz.policy import Policy
from scopeguard.authz.resolver import RoleResolver
from scopeguard.authz.store import SqlMembershipStore
from scopeguard.authz.tokens import TokenClaims, TokenService, build_claims
from scopeguard.db.session import get_db
from scopeguard.errors import Unauthenticated
from scopeguard.models.tenancy import User
from scopeguard.schemas.workflow import SwitchDepartmentIn, TokenOut
from scopeguard.security.dependencies import get_claims, get_policy, get_token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _load_active_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("Invalid or inactive user")
    return user


@router.post("/refresh", response_model=TokenOut)
def refresh_token(
    claims: TokenClaims = Depends(get_claims),
    db: Session = Depends(get_db),
    policy: Policy = Depends(get_policy),
    tokens: TokenService = Depends(get_token_service),
) -> TokenOut:
    """Re-issue the token from current memberships (clears the stale-token condition)."""
    user = _load_active_user(db, claims.subject)
    store = SqlMembershipStore(db)
    resolver = RoleResolver(store, policy.default_role)

    active = claims.cached_department_id
    if active is not None and active not in store.department_roles(user.id, claims.organization_id):
        active = None

    fresh = build_claims(resolver, user.id, claims.organization_id, active, user.department_id)
    logger.info("Token refreshed user=%s org=%s", user.id, claims.organization_id)
    return TokenOut(access_token=tokens.issue(fresh), claims=fresh.to_dict())


@router.post("/switch-department", response_model=TokenOut)
def switch_department(
    payload: SwitchDepartmentIn,
    claims: TokenClaims = Depends(get_claims),
    db: Session = Depends(get_db),
    policy: Policy = Depends(get_policy),
    tokens: TokenService = Depends(get_token_service),
) -> TokenOut:
    user = _load_active_user(db, claims.subject)
    resolver = RoleResolver(SqlMembershipStore(db), policy.default_role)
    fresh = build_claims(resolver, user.id, claims.organization_id, payload.department_id)
    logger.info("Department switched user=%s department=%s", user.id, payload.department_id)
    return TokenOut(access_token=tokens.issue(fresh), claims=fresh.to_dict())

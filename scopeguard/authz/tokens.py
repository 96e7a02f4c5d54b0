"""
Bearer tokens carrying cached authorization claims.

A token is a snapshot: role, organization and department as resolved when it was
issued. Reads may use it as a fast path; mutations always re-resolve. The `ver`
claim is the id of the newest stale-token marker that existed at issue time, so a
newer marker for the same user means the snapshot is missing something.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import jwt

from scopeguard.errors import AccessDenied, DenialReason, Unauthenticated, ValidationError
from scopeguard.settings import Settings

from .resolver import RoleResolver
from .roles import RoleName, Scope, normalize_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    subject: int
    """User id (`sub`)."""

    organization_id: int
    """Tenant the token was issued for (`org`)."""

    cached_role: RoleName
    """Organization-wide effective role at issue time (`role`)."""

    cached_department_id: int | None = None
    cached_department_role: RoleName | None = None

    version: int = 0
    """Stale-marker watermark (`ver`)."""

    issued_at: int | None = None
    expires_at: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.subject,
            "organization_id": self.organization_id,
            "role": self.cached_role.value,
            "department_id": self.cached_department_id,
            "department_role": self.cached_department_role.value if self.cached_department_role else None,
            "version": self.version,
        }

    def is_stale(self, latest_marker_id: int) -> bool:
        return latest_marker_id > self.version


def _claims_from_payload(payload: dict[str, Any]) -> TokenClaims:
    try:
        subject = int(payload["sub"])
        organization_id = int(payload["org"])
        role = normalize_role(str(payload["role"]))
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise Unauthenticated("Invalid token: missing or malformed claims") from exc

    dept = payload.get("dept")
    dept_role = payload.get("dept_role")
    try:
        return TokenClaims(
            subject=subject,
            organization_id=organization_id,
            cached_role=role,
            cached_department_id=int(dept) if dept is not None else None,
            cached_department_role=normalize_role(str(dept_role)) if dept_role else None,
            version=int(payload.get("ver", 0)),
            issued_at=payload.get("iat"),
            expires_at=payload.get("exp"),
        )
    except (TypeError, ValueError, ValidationError) as exc:
        raise Unauthenticated("Invalid token: malformed department claims") from exc


class TokenService:
    """Issues and validates HS256 bearer tokens. Never logs token contents."""

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._issuer = settings.jwt_issuer
        self._ttl = settings.token_ttl_seconds
        self._leeway = settings.clock_skew_seconds

    def issue(self, claims: TokenClaims) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": str(claims.subject),
            "org": claims.organization_id,
            "role": claims.cached_role.value,
            "ver": claims.version,
            "iss": self._issuer,
            "iat": now,
            "exp": now + self._ttl,
        }
        if claims.cached_department_id is not None:
            payload["dept"] = claims.cached_department_id
        if claims.cached_department_role is not None:
            payload["dept_role"] = claims.cached_department_role.value
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def validate(self, token: str) -> TokenClaims:
        """Verify signature, issuer and expiry; raise Unauthenticated on any failure."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["sub", "exp", "iat"], "verify_exp": True, "verify_iss": True},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("Token expired")
            raise Unauthenticated("Token expired") from e
        except jwt.InvalidIssuerError as e:
            logger.info("Token invalid issuer")
            raise Unauthenticated("Invalid token: issuer") from e
        except jwt.InvalidTokenError as e:
            logger.info("Token invalid: %s", type(e).__name__)
            raise Unauthenticated("Invalid token") from e

        return _claims_from_payload(payload)


def build_claims(
    resolver: RoleResolver,
    user_id: int,
    organization_id: int,
    department_id: int | None = None,
    home_department_id: int | None = None,
) -> TokenClaims:
    """
    Fresh claims from the membership store, used at login, refresh and department switch.

    `department_id` pins the active department (the user must be a member of it);
    otherwise the home department is used when the user belongs to it, else the
    lowest-id department membership. The cached department role is the effective
    role the resolver gives for that department, so an organization role wins over
    the raw department membership row.
    """

    store = resolver.store
    role = resolver.resolve_organization_role(user_id, organization_id)
    department_roles = store.department_roles(user_id, organization_id)

    if department_id is not None:
        if department_id not in department_roles:
            raise AccessDenied(DenialReason.NOT_SCOPED, "You are not a member of this department")
        active = department_id
    elif home_department_id is not None and home_department_id in department_roles:
        active = home_department_id
    else:
        active = min(department_roles) if department_roles else None

    department_role = resolver.resolve_role(user_id, Scope.department(active)) if active is not None else None

    return TokenClaims(
        subject=user_id,
        organization_id=organization_id,
        cached_role=role,
        cached_department_id=active,
        cached_department_role=department_role,
        version=store.latest_stale_marker_id(user_id),
    )


def department_role_from_claims(claims: TokenClaims, department_id: int) -> RoleName | None:
    """Cached department role, only when the token's active department matches."""
    if claims.cached_department_id == department_id:
        return claims.cached_department_role
    return None

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from scopeguard.authz.policy import Policy
from scopeguard.authz.tokens import TokenClaims, TokenService
from scopeguard.db.session import get_db
from scopeguard.errors import Unauthenticated
from scopeguard.notifications import EmailSink, build_email_sink
from scopeguard.security.auth import extract_bearer_token
from scopeguard.services.documents import DocumentService
from scopeguard.services.memberships import MembershipService
from scopeguard.services.notifications import NotificationService
from scopeguard.services.projects import ProjectService
from scopeguard.services.resource_requests import ResourceRequestWorkflow
from scopeguard.settings import get_settings


def get_policy(request: Request) -> Policy:
    policy = getattr(request.app.state, "policy", None)
    if policy is None:
        raise RuntimeError("Policy not loaded. Did app startup run?")
    return policy


def get_token_service() -> TokenService:
    return TokenService(get_settings())


def get_email_sink() -> EmailSink:
    return build_email_sink(get_settings())


def get_claims(request: Request) -> TokenClaims:
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise Unauthenticated("Authentication required")
    return claims


def enforce_authentication(
    request: Request,
    policy: Policy = Depends(get_policy),
    tokens: TokenService = Depends(get_token_service),
) -> None:
    """
    Global authentication dependency.

    Public routes from the policy file pass through. Everything else needs a valid
    bearer token; its cached claims land on `request.state.claims`. Authorization
    is not decided here: services re-resolve roles for every mutation.
    """

    if policy.is_public(request.method, request.url.path):
        return

    token = extract_bearer_token(request, policy.auth)
    request.state.claims = tokens.validate(token)


# ---- Service providers -----------------------------------------------------------------
# get_db is resolved after enforce_authentication, so the session already carries the
# caller's tenant.


def get_membership_service(
    db: Session = Depends(get_db),
    policy: Policy = Depends(get_policy),
    email: EmailSink = Depends(get_email_sink),
) -> MembershipService:
    return MembershipService(db, policy, email)


def get_document_service(db: Session = Depends(get_db), policy: Policy = Depends(get_policy)) -> DocumentService:
    return DocumentService(db, policy)


def get_project_service(db: Session = Depends(get_db), policy: Policy = Depends(get_policy)) -> ProjectService:
    return ProjectService(db, policy)


def get_workflow(
    db: Session = Depends(get_db),
    policy: Policy = Depends(get_policy),
    email: EmailSink = Depends(get_email_sink),
) -> ResourceRequestWorkflow:
    return ResourceRequestWorkflow(db, policy, email)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)

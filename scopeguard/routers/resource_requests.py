from __future__ import annotations

from fastapi import APIRouter, Depends, status

from scopeguard.authz.tokens import TokenClaims
from scopeguard.models.workflow import ResourceRequest
from scopeguard.schemas.workflow import ResourceRequestOut, ResourceRequestSubmitIn, ReviewIn, ReviewOut
from scopeguard.security.dependencies import get_claims, get_workflow
from scopeguard.services.resource_requests import RequestEntry, ResourceRequestWorkflow

router = APIRouter(tags=["resource_requests"])


@router.post(
    "/projects/{project_id}/resource-requests",
    response_model=list[ResourceRequestOut],
    status_code=status.HTTP_201_CREATED,
)
def submit_resource_requests(
    project_id: int,
    payload: ResourceRequestSubmitIn,
    claims: TokenClaims = Depends(get_claims),
    workflow: ResourceRequestWorkflow = Depends(get_workflow),
) -> list[ResourceRequest]:
    entries = [RequestEntry(e.user_id, e.department_id, e.message, e.role) for e in payload.requests]
    return workflow.submit(claims.subject, claims.organization_id, project_id, entries)


@router.get("/resource-requests/pending", response_model=list[ResourceRequestOut])
def list_pending_requests(
    claims: TokenClaims = Depends(get_claims),
    workflow: ResourceRequestWorkflow = Depends(get_workflow),
) -> list[ResourceRequest]:
    return workflow.list_pending(claims.subject, claims.organization_id)


@router.post("/resource-requests/{request_id}/review", response_model=ReviewOut)
def review_resource_request(
    request_id: int,
    payload: ReviewIn,
    claims: TokenClaims = Depends(get_claims),
    workflow: ResourceRequestWorkflow = Depends(get_workflow),
) -> ReviewOut:
    outcome = workflow.review(claims.subject, claims.organization_id, request_id, payload.action, payload.notes)
    return ReviewOut(
        request=ResourceRequestOut.model_validate(outcome.request),
        membership_created=outcome.membership_created,
        sharing_created=outcome.sharing_created,
        department_membership_created=outcome.propagation.department_membership_created,
    )

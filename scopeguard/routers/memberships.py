from __future__ import annotations

from fastapi import APIRouter, Depends, status

from scopeguard.authz.tokens import TokenClaims
from scopeguard.schemas.tenancy import (
    AssignMembersIn,
    AssignmentOut,
    MembershipOut,
    RemoveMemberIn,
    RoleChangeIn,
)
from scopeguard.security.dependencies import get_claims, get_membership_service
from scopeguard.services.memberships import Assignment, MembershipService

router = APIRouter(tags=["memberships"])


@router.post("/projects/{project_id}/members", response_model=list[AssignmentOut])
def assign_members(
    project_id: int,
    payload: AssignMembersIn,
    claims: TokenClaims = Depends(get_claims),
    service: MembershipService = Depends(get_membership_service),
) -> list[AssignmentOut]:
    results = service.assign_to_project(
        claims.subject,
        claims.organization_id,
        project_id,
        [Assignment(a.user_id, a.role) for a in payload.users],
        notify=payload.notify,
    )
    return [
        AssignmentOut(
            user_id=r.user_id,
            role=r.role.value,
            status=r.status,
            department_membership_created=r.propagation.department_membership_created,
        )
        for r in results
    ]


@router.delete("/projects/{project_id}/members", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    project_id: int,
    payload: RemoveMemberIn,
    claims: TokenClaims = Depends(get_claims),
    service: MembershipService = Depends(get_membership_service),
) -> None:
    service.remove_from_project(claims.subject, claims.organization_id, project_id, payload.user_id)


@router.put("/projects/{project_id}/members/{user_id}", response_model=MembershipOut)
def change_project_role(
    project_id: int,
    user_id: int,
    payload: RoleChangeIn,
    claims: TokenClaims = Depends(get_claims),
    service: MembershipService = Depends(get_membership_service),
) -> MembershipOut:
    result = service.change_project_role(claims.subject, claims.organization_id, project_id, user_id, payload.role)
    return MembershipOut(user_id=user_id, role=result.role.value, changed=result.changed)


@router.put("/organizations/members/{user_id}", response_model=MembershipOut)
def change_organization_role(
    user_id: int,
    payload: RoleChangeIn,
    claims: TokenClaims = Depends(get_claims),
    service: MembershipService = Depends(get_membership_service),
) -> MembershipOut:
    result = service.change_organization_role(claims.subject, claims.organization_id, user_id, payload.role)
    return MembershipOut(user_id=user_id, role=result.role.value, changed=result.changed or result.created)

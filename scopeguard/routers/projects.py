from __future__ import annotations

from fastapi import APIRouter, Depends

from scopeguard.authz.tokens import TokenClaims
from scopeguard.models.tenancy import Project
from scopeguard.schemas.tenancy import DepartmentProjectsOut, ProjectOut
from scopeguard.security.dependencies import get_claims, get_project_service
from scopeguard.services.projects import ProjectService

router = APIRouter(tags=["projects"])


@router.get("/projects", response_model=list[ProjectOut])
def list_projects(
    claims: TokenClaims = Depends(get_claims),
    service: ProjectService = Depends(get_project_service),
) -> list[Project]:
    return service.list_visible_projects(claims.subject, claims.organization_id)


@router.get("/departments/{department_id}/projects", response_model=DepartmentProjectsOut)
def list_department_projects(
    department_id: int,
    claims: TokenClaims = Depends(get_claims),
    service: ProjectService = Depends(get_project_service),
) -> DepartmentProjectsOut:
    result = service.list_department_projects(claims, department_id)
    return DepartmentProjectsOut(
        department_id=result.department_id,
        role=result.role.value,
        from_cache=result.from_cache,
        projects=[ProjectOut.model_validate(p) for p in result.projects],
    )

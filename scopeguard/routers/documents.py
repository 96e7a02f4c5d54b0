from __future__ import annotations

from fastapi import APIRouter, Depends, status

from scopeguard.authz.tokens import TokenClaims
from scopeguard.models.workflow import Document
from scopeguard.schemas.tenancy import DocumentCreateIn, DocumentOut, DocumentUpdateIn
from scopeguard.security.dependencies import get_claims, get_document_service
from scopeguard.services.documents import DocumentService

router = APIRouter(tags=["documents"])


@router.post("/projects/{project_id}/documents", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def create_document(
    project_id: int,
    payload: DocumentCreateIn,
    claims: TokenClaims = Depends(get_claims),
    service: DocumentService = Depends(get_document_service),
) -> Document:
    return service.create(
        claims.subject,
        claims.organization_id,
        project_id,
        payload.title,
        payload.content,
        payload.visibility,
        payload.is_public,
    )


@router.get("/documents/{document_id}", response_model=DocumentOut)
def get_document(
    document_id: int,
    claims: TokenClaims = Depends(get_claims),
    service: DocumentService = Depends(get_document_service),
) -> Document:
    return service.get(claims.subject, claims.organization_id, document_id)


@router.put("/documents/{document_id}", response_model=DocumentOut)
def update_document(
    document_id: int,
    payload: DocumentUpdateIn,
    claims: TokenClaims = Depends(get_claims),
    service: DocumentService = Depends(get_document_service),
) -> Document:
    return service.update(claims.subject, claims.organization_id, document_id, payload.model_dump(exclude_unset=True))


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    document_id: int,
    claims: TokenClaims = Depends(get_claims),
    service: DocumentService = Depends(get_document_service),
) -> None:
    service.delete(claims.subject, claims.organization_id, document_id)

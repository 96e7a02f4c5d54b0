from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from scopeguard.authz.evaluator import Target
from scopeguard.authz.policy import Action
from scopeguard.authz.roles import RoleName, Scope
from scopeguard.errors import NotFound, ValidationError
from scopeguard.models.tenancy import Project
from scopeguard.models.workflow import Document

from .base import AuthorizedService

logger = logging.getLogger(__name__)

VISIBILITIES = frozenset({"private", "project", "public"})


class DocumentService(AuthorizedService):
    """
    Project documents: the representative authored resource.

    Authors may always change their own documents. Anyone else needs to outrank
    the author, where the author's role is their *current* role in the project
    (no snapshot at authorship time is kept).
    """

    def create(
        self,
        actor_id: int,
        organization_id: int,
        project_id: int,
        title: str,
        content: str | None = None,
        visibility: str = "project",
        is_public: bool = False,
    ) -> Document:
        self.get_project(organization_id, project_id)
        visibility = _validate_visibility(visibility)
        if not (title or "").strip():
            raise ValidationError("Title is required")

        role = self.project_role(actor_id, project_id)
        self.evaluator.require(role, Action.CREATE, Target(actor_id=actor_id))

        document = Document(
            project_id=project_id,
            author_id=actor_id,
            title=title.strip(),
            content=content,
            visibility=visibility,
            is_public=is_public or visibility == "public",
            updated_by=actor_id,
        )
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        logger.info("Document created id=%s project=%s author=%s", document.id, project_id, actor_id)
        return document

    def get(self, actor_id: int, organization_id: int, document_id: int) -> Document:
        document = self._load(organization_id, document_id)
        role = self.project_role(actor_id, document.project_id)
        self.evaluator.require(
            role,
            Action.READ,
            Target(
                actor_id=actor_id,
                owner_id=document.author_id,
                visibility=document.visibility,
                is_public=document.is_public,
            ),
        )
        return document

    def update(self, actor_id: int, organization_id: int, document_id: int, changes: dict[str, Any]) -> Document:
        document = self._load(organization_id, document_id)
        self._require_ownership(actor_id, document, Action.UPDATE)

        if "title" in changes and changes["title"] is not None:
            if not str(changes["title"]).strip():
                raise ValidationError("Title is required")
            document.title = str(changes["title"]).strip()
        if "content" in changes:
            document.content = changes["content"]
        if changes.get("visibility") is not None:
            document.visibility = _validate_visibility(changes["visibility"])
        if changes.get("is_public") is not None:
            document.is_public = bool(changes["is_public"])
        document.updated_by = actor_id

        self.db.commit()
        self.db.refresh(document)
        return document

    def delete(self, actor_id: int, organization_id: int, document_id: int) -> None:
        document = self._load(organization_id, document_id)
        self._require_ownership(actor_id, document, Action.DELETE)
        self.db.delete(document)
        self.db.commit()
        logger.info("Document deleted id=%s actor=%s", document_id, actor_id)

    def author_role(self, document: Document) -> RoleName:
        """Author's current role in the document's project (default role if they left the tenant)."""
        role = self.resolver.try_resolve_role(document.author_id, Scope.project(document.project_id))
        return role or self.policy.default_role

    def _require_ownership(self, actor_id: int, document: Document, action: Action) -> None:
        actor_role = self.project_role(actor_id, document.project_id)
        self.evaluator.require(
            actor_role,
            action,
            Target(actor_id=actor_id, owner_id=document.author_id, owner_role=self.author_role(document)),
        )

    def _load(self, organization_id: int, document_id: int) -> Document:
        document = self.db.scalars(
            select(Document)
            .join(Project, Project.id == Document.project_id)
            .where(Document.id == document_id, Project.organization_id == organization_id)
        ).first()
        if document is None:
            raise NotFound("Document not found")
        return document


def _validate_visibility(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in VISIBILITIES:
        raise ValidationError(f"Invalid visibility: {value!r}")
    return normalized

"""Ownership rules on project documents."""

import pytest

from scopeguard.authz.roles import RoleName, ScopeType
from scopeguard.errors import AccessDenied, DenialReason, NotFound, ValidationError
from scopeguard.services.documents import DocumentService


@pytest.fixture
def documents(db_session, policy):
    return DocumentService(db_session, policy)


def test_member_creates_document(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "  Notes  ", "body")
    assert doc.author_id == tenant.ed
    assert doc.title == "Notes"
    assert doc.visibility == "project"
    assert not doc.is_public


def test_public_visibility_sets_public_flag(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "Open", visibility="public")
    assert doc.is_public


def test_viewer_cannot_create(documents, tenant):
    with pytest.raises(AccessDenied) as exc_info:
        documents.create(tenant.vic, tenant.org, tenant.portal, "Nope")
    assert exc_info.value.reason is DenialReason.INSUFFICIENT_ROLE


def test_invalid_visibility_is_validation_error(documents, tenant):
    with pytest.raises(ValidationError):
        documents.create(tenant.ed, tenant.org, tenant.portal, "Doc", visibility="secret")


def test_blank_title_is_validation_error(documents, tenant):
    with pytest.raises(ValidationError):
        documents.create(tenant.ed, tenant.org, tenant.portal, "   ")


def test_manager_cannot_delete_admin_document(documents, tenant):
    doc = documents.create(tenant.alice, tenant.org, tenant.portal, "Roadmap")

    with pytest.raises(AccessDenied) as exc_info:
        documents.delete(tenant.mona, tenant.org, doc.id)
    assert exc_info.value.reason is DenialReason.TARGET_PROTECTED


def test_manager_deletes_member_document(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "Draft")
    documents.delete(tenant.mona, tenant.org, doc.id)

    with pytest.raises(NotFound):
        documents.get(tenant.mona, tenant.org, doc.id)


def test_member_cannot_update_someone_elses_document(documents, tenant):
    doc = documents.create(tenant.mona, tenant.org, tenant.portal, "Plan")

    with pytest.raises(AccessDenied) as exc_info:
        documents.update(tenant.ed, tenant.org, doc.id, {"title": "Mine now"})
    assert exc_info.value.reason is DenialReason.INSUFFICIENT_ROLE


def test_author_updates_own_document(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "Draft")
    updated = documents.update(tenant.ed, tenant.org, doc.id, {"title": "Final", "visibility": "private"})
    assert updated.title == "Final"
    assert updated.visibility == "private"
    assert updated.updated_by == tenant.ed


def test_private_document_is_readable_by_author_only(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "Diary", visibility="private")

    assert documents.get(tenant.ed, tenant.org, doc.id).id == doc.id
    with pytest.raises(AccessDenied) as exc_info:
        documents.get(tenant.vic, tenant.org, doc.id)
    assert exc_info.value.reason is DenialReason.NOT_SCOPED
    # Admins read everything in the tenant
    assert documents.get(tenant.alice, tenant.org, doc.id).id == doc.id


def test_document_of_other_tenant_is_not_found(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "Internal")
    with pytest.raises(NotFound):
        documents.get(tenant.gina, tenant.other_org, doc.id)


def test_promoted_author_is_protected_by_current_role(documents, tenant):
    doc = documents.create(tenant.ed, tenant.org, tenant.portal, "Draft")
    documents.store.change_role(tenant.ed, ScopeType.PROJECT, tenant.portal, RoleName.MANAGER)

    with pytest.raises(AccessDenied) as exc_info:
        documents.delete(tenant.mona, tenant.org, doc.id)
    assert exc_info.value.reason is DenialReason.TARGET_PROTECTED

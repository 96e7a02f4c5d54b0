"""Tests for the SQL membership store (in-memory SQLite, rolled back after each test)."""

import pytest
from sqlalchemy import func, select

from scopeguard.authz.roles import RoleName, ScopeType
from scopeguard.authz.store import SqlMembershipStore
from scopeguard.db.upsert import insert_ignore
from scopeguard.errors import NotFound
from scopeguard.models.membership import DepartmentMembership, ProjectMembership
from scopeguard.models.tenancy import SharedProject


@pytest.fixture
def store(db_session):
    return SqlMembershipStore(db_session)


def _count(db_session, model, **filters):
    stmt = select(func.count()).select_from(model)
    for column, value in filters.items():
        stmt = stmt.where(getattr(model, column) == value)
    return db_session.scalar(stmt)


def test_get_role_per_scope(store, tenant):
    assert store.get_role(tenant.alice, ScopeType.ORGANIZATION, tenant.org) is RoleName.ADMIN
    assert store.get_role(tenant.mona, ScopeType.DEPARTMENT, tenant.eng) is RoleName.MANAGER
    assert store.get_role(tenant.vic, ScopeType.PROJECT, tenant.portal) is RoleName.VIEWER
    assert store.get_role(tenant.ed, ScopeType.PROJECT, tenant.crm) is None


def test_upsert_is_idempotent(store, tenant, db_session):
    first = store.upsert_membership(tenant.sam, ScopeType.PROJECT, tenant.crm, RoleName.MEMBER)
    second = store.upsert_membership(tenant.sam, ScopeType.PROJECT, tenant.crm, RoleName.MEMBER)

    assert first.created is True
    assert second.created is False
    assert second.changed is False
    assert first.membership.id == second.membership.id
    assert _count(db_session, ProjectMembership, user_id=tenant.sam, project_id=tenant.crm) == 1


def test_upsert_with_other_role_changes_in_place(store, tenant, db_session):
    result = store.upsert_membership(tenant.ed, ScopeType.PROJECT, tenant.portal, RoleName.VIEWER)

    assert result.created is False
    assert result.changed is True
    assert store.get_role(tenant.ed, ScopeType.PROJECT, tenant.portal) is RoleName.VIEWER
    assert _count(db_session, ProjectMembership, user_id=tenant.ed, project_id=tenant.portal) == 1


def test_department_membership_records_organization(store, tenant, db_session):
    store.upsert_membership(tenant.sam, ScopeType.DEPARTMENT, tenant.eng, RoleName.MEMBER)
    row = db_session.scalars(
        select(DepartmentMembership).where(
            DepartmentMembership.user_id == tenant.sam, DepartmentMembership.department_id == tenant.eng
        )
    ).one()
    assert row.organization_id == tenant.org


def test_change_role_requires_existing_membership(store, tenant):
    with pytest.raises(NotFound):
        store.change_role(tenant.sam, ScopeType.PROJECT, tenant.portal, RoleName.MEMBER)


def test_remove_membership(store, tenant):
    assert store.remove_membership(tenant.vic, ScopeType.PROJECT, tenant.portal) is True
    assert store.remove_membership(tenant.vic, ScopeType.PROJECT, tenant.portal) is False
    assert store.get_role(tenant.vic, ScopeType.PROJECT, tenant.portal) is None


def test_organization_of_missing_scope_is_not_found(store, tenant):
    assert store.organization_of(ScopeType.PROJECT, tenant.portal) == tenant.org
    assert store.organization_of(ScopeType.DEPARTMENT, tenant.sales) == tenant.org
    with pytest.raises(NotFound):
        store.organization_of(ScopeType.PROJECT, 99999)
    with pytest.raises(NotFound):
        store.organization_of(ScopeType.DEPARTMENT, 99999)


def test_membership_paths(store, tenant):
    assert store.has_membership_path(tenant.vic, tenant.org)  # project-only
    assert store.has_membership_path(tenant.sam, tenant.org)  # department-only
    assert not store.has_membership_path(tenant.outsider, tenant.org)
    assert not store.has_membership_path(tenant.gina, tenant.org)


def test_stale_markers_are_monotonic(store, tenant):
    assert store.latest_stale_marker_id(tenant.ed) == 0
    first = store.mark_token_stale(tenant.ed, "test")
    second = store.mark_token_stale(tenant.ed, "test")
    assert second.id > first.id
    assert store.latest_stale_marker_id(tenant.ed) == second.id


def test_insert_ignore_treats_conflict_as_satisfied(db_session, tenant):
    values = {"project_id": tenant.crm, "department_id": tenant.eng}
    assert insert_ignore(db_session, SharedProject, values, ["project_id", "department_id"]) is True
    assert insert_ignore(db_session, SharedProject, values, ["project_id", "department_id"]) is False
    assert _count(db_session, SharedProject, project_id=tenant.crm) == 1

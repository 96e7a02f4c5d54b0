"""
Pytest fixtures for the test suite.

Tests use an in-memory SQLite engine and a session that rolls back after each
test, so tests do not affect each other. Service commits land in SAVEPOINTs
inside the outer per-test transaction.
"""
from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from scopeguard.authz.policy import load_policy_config
from scopeguard.authz.roles import RoleName
from scopeguard.authz.tokens import TokenClaims, TokenService
from scopeguard.db.session import configure_sqlite
from scopeguard.models.membership import DepartmentMembership, OrganizationMembership, ProjectMembership
from scopeguard.models.tenancy import Department, Organization, Project, ProjectDepartment, User
from scopeguard.settings import Settings


TEST_DB_URL = "sqlite:///:memory:"
POLICY_PATH = Path(__file__).resolve().parents[1] / "config" / "policy.yaml"


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    return configure_sqlite(
        create_engine(
            TEST_DB_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    )


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    import scopeguard.models  # noqa: F401  (register models)
    from scopeguard.db.base import Base

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(tables):
    """
    Provide a Session bound to the test DB; roll back after each test.

    `join_transaction_mode="create_savepoint"` lets services call commit() and
    rollback() freely while the outer transaction still discards everything.
    """
    connection = tables.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        class_=Session,
        join_transaction_mode="create_savepoint",
    )
    session = TestSession()
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def policy():
    return load_policy_config(POLICY_PATH)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret-0123456789abcdef0123456789", token_ttl_seconds=600)


@pytest.fixture
def token_service(settings):
    return TokenService(settings)


@pytest.fixture
def roles(db_session):
    from scopeguard.db.init_db import ensure_roles

    rows = ensure_roles(db_session)
    db_session.commit()
    return {name: row.id for name, row in rows.items()}


@pytest.fixture
def tenant(db_session, roles):
    """
    A small tenant ("Acme") plus a second one ("Globex") for isolation checks.

    Acme
      Engineering: dana (dept Admin), mona (Manager), ed (Member)
      Sales:       sam (Member)
      org-level:   alice (Admin), oscar (Manager)
      projects:    portal (Engineering; mona Manager, ed Member, vic Viewer),
                   billing (Engineering; no direct members),
                   crm (Sales), loose (no department)
      outsider:    no membership at all
    """

    acme = Organization(name="Acme", domain="acme.test")
    globex = Organization(name="Globex", domain="globex.test")
    db_session.add_all([acme, globex])
    db_session.flush()

    eng = Department(organization_id=acme.id, name="Engineering")
    sales = Department(organization_id=acme.id, name="Sales")
    g_ops = Department(organization_id=globex.id, name="Ops")
    db_session.add_all([eng, sales, g_ops])
    db_session.flush()

    users = {
        key: User(name=key.title(), email=f"{key}@acme.test", department_id=dept)
        for key, dept in [
            ("alice", eng.id),
            ("oscar", None),
            ("dana", eng.id),
            ("mona", eng.id),
            ("ed", eng.id),
            ("vic", None),
            ("sam", sales.id),
            ("outsider", None),
            ("gina", g_ops.id),
        ]
    }
    db_session.add_all(users.values())
    db_session.flush()

    portal = Project(organization_id=acme.id, name="Portal")
    billing = Project(organization_id=acme.id, name="Billing")
    crm = Project(organization_id=acme.id, name="CRM")
    loose = Project(organization_id=acme.id, name="Loose")
    g_proj = Project(organization_id=globex.id, name="Globex Internal")
    db_session.add_all([portal, billing, crm, loose, g_proj])
    db_session.flush()

    db_session.add_all(
        [
            ProjectDepartment(project_id=portal.id, department_id=eng.id),
            ProjectDepartment(project_id=billing.id, department_id=eng.id),
            ProjectDepartment(project_id=crm.id, department_id=sales.id),
            ProjectDepartment(project_id=g_proj.id, department_id=g_ops.id),
        ]
    )

    def org(user, role):
        db_session.add(OrganizationMembership(user_id=users[user].id, organization_id=acme.id, role_id=roles[role]))

    def dept(user, department, role, organization=acme):
        db_session.add(
            DepartmentMembership(
                user_id=users[user].id,
                department_id=department.id,
                organization_id=organization.id,
                role_id=roles[role],
            )
        )

    def proj(user, project, role):
        db_session.add(ProjectMembership(user_id=users[user].id, project_id=project.id, role_id=roles[role]))

    org("alice", RoleName.ADMIN)
    org("oscar", RoleName.MANAGER)
    dept("dana", eng, RoleName.ADMIN)
    dept("mona", eng, RoleName.MANAGER)
    dept("ed", eng, RoleName.MEMBER)
    dept("sam", sales, RoleName.MEMBER)
    dept("gina", g_ops, RoleName.ADMIN, organization=globex)
    proj("mona", portal, RoleName.MANAGER)
    proj("ed", portal, RoleName.MEMBER)
    proj("vic", portal, RoleName.VIEWER)
    db_session.commit()

    return SimpleNamespace(
        org=acme.id,
        other_org=globex.id,
        eng=eng.id,
        sales=sales.id,
        other_dept=g_ops.id,
        portal=portal.id,
        billing=billing.id,
        crm=crm.id,
        loose=loose.id,
        other_project=g_proj.id,
        **{key: user.id for key, user in users.items()},
    )


@pytest.fixture
def app(db_session, policy, settings):
    """FastAPI app wired to the test session. Lifespan is not run."""
    from scopeguard.db.session import get_db
    from scopeguard.main import create_app
    from scopeguard.notifications import LoggingEmailSink
    from scopeguard.security.dependencies import get_email_sink, get_token_service

    application = create_app()
    application.state.policy = policy

    def _get_db(request: Request):
        claims = getattr(request.state, "claims", None)
        if claims is not None:
            db_session.info["tenant_id"] = claims.organization_id
        try:
            yield db_session
        finally:
            db_session.info.pop("tenant_id", None)

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_token_service] = lambda: TokenService(settings)
    application.dependency_overrides[get_email_sink] = LoggingEmailSink
    return application


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def auth_headers(token_service, tenant):
    """Build `Authorization` headers for a tenant user: auth_headers("mona", role=RoleName.MANAGER)."""

    def _headers(user: str, role: RoleName = RoleName.MEMBER, organization_id: int | None = None, **extra):
        claims = TokenClaims(
            subject=getattr(tenant, user),
            organization_id=organization_id or tenant.org,
            cached_role=role,
            **extra,
        )
        return {"Authorization": f"Bearer {token_service.issue(claims)}"}

    return _headers

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from scopeguard.authz.roles import RoleName
from scopeguard.db.base import Base
from scopeguard.db.session import SessionLocal, engine
from scopeguard.models.membership import DepartmentMembership, OrganizationMembership, ProjectMembership
from scopeguard.models.tenancy import Department, Organization, Project, ProjectDepartment, Role, User

ROLE_DESCRIPTIONS = {
    RoleName.ADMIN: "Unrestricted within the tenant",
    RoleName.MANAGER: "Manages membership of assigned projects",
    RoleName.MEMBER: "Works on projects",
    RoleName.VIEWER: "Read-only access",
}


def init_db() -> None:
    """
    Create tables + seed a demo tenant.

    Small and deterministic so the authorization rules can be tried without any
    setup. Role rows are always ensured; demo data only goes into an empty DB.
    """

    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        ensure_roles(db)
        if not _has_seed_data(db):
            _seed(db)
        db.commit()


def ensure_roles(db: Session) -> dict[RoleName, Role]:
    existing = {row.name: row for row in db.scalars(select(Role)).all()}
    roles: dict[RoleName, Role] = {}
    for name, description in ROLE_DESCRIPTIONS.items():
        row = existing.get(name.value)
        if row is None:
            row = Role(name=name.value, description=description)
            db.add(row)
        roles[name] = row
    db.flush()
    return roles


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(Organization.id).limit(1)).first() is not None


def _seed(db: Session) -> None:
    roles = ensure_roles(db)

    acme = Organization(name="Acme Corp", domain="acme.example.com")
    db.add(acme)
    db.flush()

    eng = Department(organization_id=acme.id, name="Engineering", description="Product engineering")
    sales = Department(organization_id=acme.id, name="Sales", description="Sales team")
    db.add_all([eng, sales])
    db.flush()

    alice = User(name="Alice Admin", email="alice@acme.example.com", department_id=eng.id)
    mona = User(name="Mona Manager", email="mona@acme.example.com", department_id=eng.id)
    ed = User(name="Ed Engineer", email="ed@acme.example.com", department_id=eng.id)
    sam = User(name="Sam Sales", email="sam@acme.example.com", department_id=sales.id)
    db.add_all([alice, mona, ed, sam])
    db.flush()

    portal = Project(organization_id=acme.id, name="Customer Portal", created_by=alice.id)
    crm = Project(organization_id=acme.id, name="CRM Rollout", created_by=alice.id)
    db.add_all([portal, crm])
    db.flush()
    db.add_all(
        [
            ProjectDepartment(project_id=portal.id, department_id=eng.id),
            ProjectDepartment(project_id=crm.id, department_id=sales.id),
        ]
    )

    db.add_all(
        [
            OrganizationMembership(user_id=alice.id, organization_id=acme.id, role_id=roles[RoleName.ADMIN].id),
            DepartmentMembership(
                user_id=mona.id, department_id=eng.id, organization_id=acme.id, role_id=roles[RoleName.MANAGER].id
            ),
            DepartmentMembership(
                user_id=ed.id, department_id=eng.id, organization_id=acme.id, role_id=roles[RoleName.MEMBER].id
            ),
            DepartmentMembership(
                user_id=sam.id, department_id=sales.id, organization_id=acme.id, role_id=roles[RoleName.MEMBER].id
            ),
            ProjectMembership(user_id=mona.id, project_id=portal.id, role_id=roles[RoleName.MANAGER].id),
            ProjectMembership(user_id=ed.id, project_id=portal.id, role_id=roles[RoleName.MEMBER].id),
        ]
    )
    db.flush()

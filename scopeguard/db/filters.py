from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session, with_loader_criteria


@event.listens_for(Session, "do_orm_execute")
def _apply_tenant_filter(execute_state) -> None:
    """
    Transparent tenant scoping.

    Any ORM SELECT on a session carrying `info["tenant_id"]` only sees projects and
    departments of that organization. Lookups by id from another tenant return
    nothing and surface as NotFound.
    """

    if not execute_state.is_select:
        return

    tenant_id = execute_state.session.info.get("tenant_id")
    if tenant_id is None:
        return

    # Local import to avoid cycles.
    from scopeguard.models.tenancy import Department, Project  # noqa: WPS433 (local import)

    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(Project, lambda cls: cls.organization_id == tenant_id, include_aliases=True),
        with_loader_criteria(Department, lambda cls: cls.organization_id == tenant_id, include_aliases=True),
    )

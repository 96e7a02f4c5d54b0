"""ORM models. Importing this package registers every table on `Base.metadata`."""

from .membership import DepartmentMembership, OrganizationMembership, ProjectMembership
from .tenancy import Department, Organization, Project, ProjectDepartment, Role, SharedProject, User
from .workflow import Document, Notification, ResourceRequest, StaleTokenMarker

__all__ = [
    "Department",
    "DepartmentMembership",
    "Document",
    "Notification",
    "Organization",
    "OrganizationMembership",
    "Project",
    "ProjectDepartment",
    "ProjectMembership",
    "ResourceRequest",
    "Role",
    "SharedProject",
    "StaleTokenMarker",
    "User",
]

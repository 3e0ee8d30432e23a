"""
Polaris resource records

Normalized shapes for the four resources the auditor collects, the functions
that map raw JSON:API items onto them, and the column layouts of the CSV
exports built from them.
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

NO_APPLICATION_NAME = "No Application Name"

# Stands in for an empty properties object so downstream tools never see {}
EMPTY_PROPERTIES = {"key": "value"}

MAX_BRANCH_COLUMNS = 5


class PrincipalKind(Enum):
    """Kinds of principals holding a role on a project"""

    USER = "User"
    GROUP = "GroupName"


class ReportPrincipalType(Enum):
    """Principal type labels used in the final report"""

    USER = "Individual User"
    GROUP = "Group"


@dataclass
class Application:
    """An application and the projects it groups"""

    id: str
    name: str
    description: str | None
    projects: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Application":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            projects=list(data.get("projects", [])),
        )


@dataclass
class Project:
    """A project (repository) registered on the platform"""

    id: str
    name: str
    type: str
    properties: dict[str, str]
    branches: str  # related-link URL of the project's branch collection

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            name=data["name"],
            type=data.get("type", ""),
            properties=dict(data.get("properties") or EMPTY_PROPERTIES),
            branches=data.get("branches", ""),
        )


@dataclass
class Branch:
    """A branch and the project it belongs to"""

    name: str
    project_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Branch":
        return cls(name=data["name"], project_id=data["project_id"])


@dataclass
class Principal:
    """A user or group with a role on one project"""

    project_name: str
    project_id: str
    user_type: str  # PrincipalKind value
    name: str
    email: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Principal":
        return cls(
            project_name=data["project_name"],
            project_id=data["project_id"],
            user_type=data["user_type"],
            name=data["name"],
            email=data.get("email") or "",
        )


@dataclass
class ProjectReportRow:
    """One principal on one project, widened with the project's first branches"""

    application_name: str
    project_name: str
    project_id: str
    type: str
    name: str
    email: str
    branch_name_1: str = ""
    branch_name_2: str = ""
    branch_name_3: str = ""
    branch_name_4: str = ""
    branch_name_5: str = ""

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for CSV writing"""
        return asdict(self)


def normalize_application(item: dict[str, Any]) -> Application:
    """Map a raw application item, flattening its projects relationship to ids"""
    attributes = item["attributes"]
    return Application(
        id=item["id"],
        name=attributes["name"],
        description=attributes.get("description"),
        projects=[project["id"] for project in item["relationships"]["projects"]["data"]],
    )


def normalize_project(item: dict[str, Any]) -> Project:
    """Map a raw project item; empty properties become the placeholder pair"""
    attributes = item["attributes"]
    return Project(
        id=item["id"],
        name=attributes["name"],
        type=attributes.get("type", ""),
        properties=dict(attributes.get("properties") or EMPTY_PROPERTIES),
        branches=item["relationships"]["branches"]["links"]["related"],
    )


def normalize_branch(item: dict[str, Any]) -> Branch:
    """Map a raw branch item, taking the owner from its project relationship"""
    return Branch(
        name=item["attributes"]["name"],
        project_id=item["relationships"]["project"]["data"]["id"],
    )


def split_role_assignment_document(document: dict[str, Any], project: Project) -> list[Principal]:
    """
    Extract the principals of a role-assignments compound document

    Args:
        document: Response body including the expanded users and groups
        project: Project the assignments were filtered by

    Returns:
        Users of the project followed by its groups, in document order

    """
    included = [item for item in document.get("included") or [] if isinstance(item, dict)]

    users = [
        Principal(
            project_name=project.name,
            project_id=project.id,
            user_type=PrincipalKind.USER.value,
            name=item["attributes"]["name"],
            email=item["attributes"].get("email") or "",
        )
        for item in included
        if item.get("type") == "users"
    ]
    groups = [
        Principal(
            project_name=project.name,
            project_id=project.id,
            user_type=PrincipalKind.GROUP.value,
            name=item["attributes"]["groupname"],
        )
        for item in included
        if item.get("type") == "groups"
    ]
    return users + groups


def pad_branches(branch_names: list[str], width: int = MAX_BRANCH_COLUMNS) -> list[str]:
    """Cut or pad a branch list to exactly ``width`` names"""
    names = branch_names[:width]
    return names + [""] * (width - len(names))


# CSV layouts: (record field, header title)
APPLICATION_COLUMNS = [
    ("id", "Application ID"),
    ("name", "Application Name"),
    ("description", "Description"),
    ("project", "Project ID"),
]

PROJECT_COLUMNS = [
    ("id", "ID"),
    ("type", "Type"),
    ("properties", "Properties"),
    ("name", "Name"),
    ("branches", "Branches"),
]

PRINCIPAL_COLUMNS = [
    ("project_name", "Project Name"),
    ("project_id", "Project ID"),
    ("user_type", "Type"),
    ("name", "Name"),
    ("email", "Email"),
]

REPORT_COLUMNS = [
    ("application_name", "Application Name"),
    ("project_name", "Project Name"),
    ("project_id", "Project ID"),
    ("type", "Type"),
    ("name", "Name"),
    ("email", "Email"),
] + [(f"branch_name_{i}", f"Branch Name {i}") for i in range(1, MAX_BRANCH_COLUMNS + 1)]


def application_csv_rows(applications: list[Application]) -> list[dict[str, Any]]:
    """One row per (application, project) pair; applications without projects are left out"""
    return [
        {
            "id": application.id,
            "name": application.name,
            "description": application.description,
            "project": project_id,
        }
        for application in applications
        for project_id in application.projects
    ]


def project_csv_rows(projects: list[Project]) -> list[dict[str, Any]]:
    rows = []
    for project in projects:
        row = project.to_dict()
        row["properties"] = json.dumps(project.properties, separators=(",", ":"))
        rows.append(row)
    return rows


def principal_csv_rows(principals: list[Principal]) -> list[dict[str, Any]]:
    return [principal.to_dict() for principal in principals]


def project_branch_columns(width: int) -> list[tuple[str, str]]:
    """Column layout of the per-project branch export, ``width`` branch columns wide"""
    return [("project_name", "Project Name")] + [
        (f"branch_name_{i}", f"Branch Name {i}") for i in range(1, width + 1)
    ]

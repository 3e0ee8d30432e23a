"""
Polaris Project Access Report

Joins the snapshots written by the auditor into the final report:
- one row per principal per project
- the owning application's name (or a placeholder when there is none)
- the project's first five branches as extra columns

Also writes the per-project branch export. Runs on its own against an
existing output directory, so the report can be rebuilt without refetching.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from polaris_errors import FileSystemError
from polaris_logging import setup_logging
from polaris_models import (
    MAX_BRANCH_COLUMNS,
    NO_APPLICATION_NAME,
    REPORT_COLUMNS,
    Application,
    Branch,
    Principal,
    PrincipalKind,
    Project,
    ProjectReportRow,
    ReportPrincipalType,
    pad_branches,
    project_branch_columns,
)
from snapshot_store import (
    APPLICATIONS_SNAPSHOT,
    BRANCHES_SNAPSHOT,
    FINAL_REPORT_CSV,
    PRINCIPALS_SNAPSHOT,
    PROJECT_BRANCHES_CSV,
    PROJECTS_SNAPSHOT,
    SnapshotStore,
)

logger = logging.getLogger(__name__)


@dataclass
class ProjectAggregate:
    """Everything the report knows about one project"""

    project_name: str
    project_id: str
    type: str
    branches: list[str] = field(default_factory=list)
    users: list[Principal] = field(default_factory=list)
    groups: list[Principal] = field(default_factory=list)


class ProjectReportBuilder:
    """Builds the project access report from persisted snapshots"""

    def __init__(self, store: SnapshotStore):
        self.store = store
        self.applications: list[Application] = []
        self.projects: list[Project] = []
        self.branches: list[Branch] = []
        self.principals: list[Principal] = []

    def load_data(self) -> None:
        """Load the four snapshots; a missing snapshot counts as empty"""
        self.applications = [Application.from_dict(d) for d in self.store.load_snapshot(APPLICATIONS_SNAPSHOT, [])]
        self.projects = [Project.from_dict(d) for d in self.store.load_snapshot(PROJECTS_SNAPSHOT, [])]
        self.branches = [Branch.from_dict(d) for d in self.store.load_snapshot(BRANCHES_SNAPSHOT, [])]
        self.principals = [Principal.from_dict(d) for d in self.store.load_snapshot(PRINCIPALS_SNAPSHOT, [])]

        logger.info(
            f"Loaded {len(self.applications)} applications, {len(self.projects)} projects, "
            f"{len(self.branches)} branches, {len(self.principals)} principals"
        )

    def build_project_map(self) -> dict[str, ProjectAggregate]:
        """Group branches and principals under their project, in project snapshot order"""
        project_map = {
            project.id: ProjectAggregate(project_name=project.name, project_id=project.id, type=project.type)
            for project in self.projects
        }

        for branch in self.branches:
            aggregate = project_map.get(branch.project_id)
            if aggregate:
                aggregate.branches.append(branch.name)

        for principal in self.principals:
            aggregate = project_map.get(principal.project_id)
            if not aggregate:
                continue
            if principal.user_type == PrincipalKind.USER.value:
                aggregate.users.append(principal)
            elif principal.user_type == PrincipalKind.GROUP.value:
                aggregate.groups.append(principal)

        return project_map

    def build_application_map(self, project_map: dict[str, ProjectAggregate]) -> dict[str, str]:
        """Map project id to application name; the last application listing a project wins"""
        application_map = {}
        for application in self.applications:
            for project_id in application.projects:
                if project_id in project_map:
                    application_map[project_id] = application.name
        return application_map

    def build_rows(self) -> list[ProjectReportRow]:
        """Produce report rows: per project, all users first, then all groups"""
        project_map = self.build_project_map()
        application_map = self.build_application_map(project_map)

        rows = []
        for project in project_map.values():
            application_name = application_map.get(project.project_id, NO_APPLICATION_NAME)
            branch_names = pad_branches(project.branches, MAX_BRANCH_COLUMNS)

            members = [(ReportPrincipalType.USER, user) for user in project.users] + [
                (ReportPrincipalType.GROUP, group) for group in project.groups
            ]
            for principal_type, principal in members:
                rows.append(
                    ProjectReportRow(
                        application_name,
                        project.project_name,
                        project.project_id,
                        principal_type.value,
                        principal.name,
                        principal.email if principal_type is ReportPrincipalType.USER else "",
                        *branch_names,
                    )
                )

        return rows

    def write_project_branches(self, project_map: dict[str, ProjectAggregate]) -> Path:
        """Write one row per project with as many branch columns as the widest project needs"""
        width = max((len(project.branches) for project in project_map.values()), default=0)
        rows = []
        for project in project_map.values():
            row = {"project_name": project.project_name}
            row.update({f"branch_name_{i}": name for i, name in enumerate(project.branches, start=1)})
            rows.append(row)
        return self.store.write_csv(PROJECT_BRANCHES_CSV, project_branch_columns(width), rows)

    def generate(self) -> list[ProjectReportRow]:
        """
        Load the snapshots and write the branch export and the final report

        Returns:
            The report rows, in output order

        """
        self.load_data()

        self.write_project_branches(self.build_project_map())

        rows = self.build_rows()
        path = self.store.write_csv(FINAL_REPORT_CSV, REPORT_COLUMNS, (row.to_dict() for row in rows))

        orphaned = {row.project_id for row in rows if row.application_name == NO_APPLICATION_NAME}
        logger.info(f"Final project details ({len(rows)} rows) have been saved to {path}")
        if orphaned:
            logger.info(f"  Projects without an application: {len(orphaned)}")

        return rows


def main(argv: list[str] | None = None) -> int:
    """Main entry point"""
    argv = sys.argv if argv is None else argv
    if len(argv) > 2:
        print("Usage: python create_report.py [output_dir]")
        print("\nExample:")
        print("  python create_report.py output")
        return 1

    output_dir = Path(argv[1]) if len(argv) > 1 else Path("output")
    setup_logging()

    if not output_dir.is_dir():
        logger.error(f"Output directory {output_dir} does not exist; run the audit first")
        return 1

    try:
        ProjectReportBuilder(SnapshotStore(output_dir)).generate()
    except FileSystemError as e:
        logger.error(f"File system error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

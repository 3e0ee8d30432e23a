"""
Snapshot persistence for the Polaris inventory auditor

Writes JSON snapshots and CSV exports into the run's output directory and
decides, per resource, whether an existing snapshot is reused, overwritten,
or only replaced after the operator confirms.
"""

import csv
import json
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any

from polaris_errors import FileSystemError

logger = logging.getLogger(__name__)

APPLICATIONS = "applications"
PROJECTS = "projects"
BRANCHES = "branches"
ROLE_ASSIGNMENTS = "role_assignments"

# Order in which stages are prepared and their results checked
RESOURCE_ORDER = [APPLICATIONS, PROJECTS, ROLE_ASSIGNMENTS, BRANCHES]

APPLICATIONS_SNAPSHOT = "applicationsList.json"
APPLICATIONS_CSV = "applicationsList.csv"
PROJECTS_SNAPSHOT = "projectList.json"
PROJECTS_CSV = "projectList.csv"
BRANCHES_SNAPSHOT = "branchesList.json"
PROJECT_BRANCHES_CSV = "projectBranches.csv"
PRINCIPALS_SNAPSHOT = "userDetailsList.json"
PRINCIPALS_CSV = "userDetailsList.csv"
FINAL_REPORT_CSV = "finalProjectDetails.csv"

# Snapshot first: it is the file a reuse decision looks at
STAGE_ARTIFACTS = {
    APPLICATIONS: (APPLICATIONS_SNAPSHOT, APPLICATIONS_CSV),
    PROJECTS: (PROJECTS_SNAPSHOT, PROJECTS_CSV),
    BRANCHES: (BRANCHES_SNAPSHOT, PROJECT_BRANCHES_CSV),
    ROLE_ASSIGNMENTS: (PRINCIPALS_SNAPSHOT, PRINCIPALS_CSV),
}


class SnapshotMode(Enum):
    """How a stage treats a snapshot left by an earlier run"""

    ALWAYS_FETCH = "always-fetch"
    REUSE_IF_PRESENT = "reuse-if-present"
    PROMPT_ON_CONFLICT = "prompt-on-conflict"


class StageAction(Enum):
    """What a stage does after its artifacts have been checked"""

    FETCH = "fetch"
    REUSE = "reuse"
    ABORT = "abort"


DEFAULT_SNAPSHOT_MODES = {
    APPLICATIONS: SnapshotMode.PROMPT_ON_CONFLICT,
    PROJECTS: SnapshotMode.REUSE_IF_PRESENT,
    BRANCHES: SnapshotMode.PROMPT_ON_CONFLICT,
    ROLE_ASSIGNMENTS: SnapshotMode.PROMPT_ON_CONFLICT,
}

ConfirmFn = Callable[[str], bool]


def console_confirm(prompt: str) -> bool:
    """Ask a yes/no question on the console"""
    answer = input(f"{prompt} [ yes | no ]: ")
    return answer.strip().lower() in ("yes", "y")


def always_confirm(prompt: str) -> bool:
    logger.info(f"{prompt} yes (--yes)")
    return True


class SnapshotStore:
    """Output directory holding the snapshots and exports of one run"""

    def __init__(self, output_dir: str | Path, confirm: ConfirmFn = console_confirm):
        """
        Initialize the store

        Args:
            output_dir: Directory for every artifact of the run
            confirm: Answers overwrite questions; receives the prompt text

        """
        self.output_dir = Path(output_dir)
        self.confirm = confirm

    def path(self, name: str) -> Path:
        return self.output_dir / name

    def ensure_output_dir(self) -> None:
        """Create the output directory if it does not exist yet"""
        if self.output_dir.is_dir():
            return
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Cannot create output directory {self.output_dir}: {e}") from e
        logger.info(f"Created output directory {self.output_dir}")

    def exists(self, name: str) -> bool:
        try:
            return self.path(name).exists()
        except OSError as e:
            raise FileSystemError(f"Cannot access {self.path(name)}: {e}") from e

    def delete(self, name: str) -> None:
        try:
            self.path(name).unlink(missing_ok=True)
        except OSError as e:
            raise FileSystemError(f"Cannot delete {self.path(name)}: {e}") from e
        logger.info(f"Existing {name} file deleted.")

    def discard_stage(self, resource: str) -> None:
        """Remove every artifact an earlier run left for a stage"""
        for name in STAGE_ARTIFACTS[resource]:
            if self.exists(name):
                self.delete(name)

    def prepare_stage(self, resource: str, mode: SnapshotMode) -> StageAction:
        """
        Check a stage's artifacts against its snapshot mode

        Args:
            resource: One of the resource names in STAGE_ARTIFACTS
            mode: Policy for artifacts left by an earlier run

        Returns:
            FETCH when the stage must call the platform, REUSE when its snapshot
            stands in for the fetch, ABORT when the operator declined an overwrite.
            Nothing is deleted here; a fetched stage replaces its artifacts
            when it persists its results.

        """
        artifacts = STAGE_ARTIFACTS[resource]

        if mode is SnapshotMode.REUSE_IF_PRESENT and self.exists(artifacts[0]):
            logger.info(f"Reading {resource} from existing {artifacts[0]}")
            return StageAction.REUSE

        for name in artifacts:
            if not self.exists(name):
                continue
            if mode is SnapshotMode.PROMPT_ON_CONFLICT and not self.confirm(
                f"{name} already exists. Do you want to delete it?"
            ):
                logger.info(f"Keeping {name}; skipping the {resource} stage.")
                return StageAction.ABORT

        return StageAction.FETCH

    def write_json(self, name: str, data: Any) -> Path:
        """Write a pretty-printed JSON snapshot"""
        path = self.path(name)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
        except OSError as e:
            raise FileSystemError(f"Cannot write {path}: {e}") from e
        logger.info(f"Saved {name}")
        return path

    def load_snapshot(self, name: str, default: Any = None) -> Any:
        """
        Read a JSON snapshot

        Args:
            name: Artifact file name
            default: Returned when the snapshot does not exist

        Returns:
            Parsed snapshot content or ``default``

        """
        path = self.path(name)
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.warning(f"Snapshot {name} not found in {self.output_dir}")
            return default
        except json.JSONDecodeError as e:
            raise FileSystemError(f"Snapshot {path} is not valid JSON: {e}") from e
        except OSError as e:
            raise FileSystemError(f"Cannot read {path}: {e}") from e

    def write_csv(self, name: str, columns: list[tuple[str, str]], rows: Iterable[dict[str, Any]]) -> Path:
        """
        Write a CSV export with a title row

        Args:
            name: Artifact file name
            columns: (record field, header title) pairs in output order
            rows: Records keyed by field; missing fields are written empty

        Returns:
            Path of the written file

        """
        path = self.path(name)
        fieldnames = [column for column, _ in columns]
        try:
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=fieldnames, restval="", extrasaction="ignore")
                writer.writerow(dict(columns))
                writer.writerows(rows)
        except OSError as e:
            raise FileSystemError(f"Cannot write {path}: {e}") from e
        logger.info(f"Saved {name}")
        return path

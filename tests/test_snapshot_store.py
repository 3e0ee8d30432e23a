"""Tests for snapshot persistence and the per-resource snapshot policy."""

import csv
import json

import pytest

from polaris_errors import FileSystemError
from snapshot_store import (
    APPLICATIONS,
    APPLICATIONS_CSV,
    APPLICATIONS_SNAPSHOT,
    PROJECTS,
    PROJECTS_SNAPSHOT,
    SnapshotMode,
    SnapshotStore,
    StageAction,
)
from tests.conftest import RecordingConfirm


def _never_asked(prompt):
    raise AssertionError(f"unexpected prompt: {prompt}")


class TestOutputDirectory:
    """Bootstrapping the output directory."""

    def test_creates_missing_directory(self, tmp_path):
        store = SnapshotStore(tmp_path / "nested" / "output")

        store.ensure_output_dir()
        store.ensure_output_dir()

        assert (tmp_path / "nested" / "output").is_dir()

    def test_file_in_the_way_is_a_filesystem_error(self, tmp_path):
        (tmp_path / "output").write_text("not a directory")
        store = SnapshotStore(tmp_path / "output")

        with pytest.raises(FileSystemError):
            store.ensure_output_dir()


class TestPrepareStage:
    """Snapshot modes."""

    def test_fetch_when_nothing_exists(self, store, confirm):
        store.ensure_output_dir()

        assert store.prepare_stage(APPLICATIONS, SnapshotMode.PROMPT_ON_CONFLICT) is StageAction.FETCH
        assert confirm.prompts == []

    def test_reuse_existing_snapshot(self, output_dir):
        store = SnapshotStore(output_dir, confirm=_never_asked)
        store.ensure_output_dir()
        store.write_json(PROJECTS_SNAPSHOT, [])

        assert store.prepare_stage(PROJECTS, SnapshotMode.REUSE_IF_PRESENT) is StageAction.REUSE
        assert store.exists(PROJECTS_SNAPSHOT)

    def test_reuse_mode_fetches_without_snapshot(self, output_dir):
        store = SnapshotStore(output_dir, confirm=_never_asked)
        store.ensure_output_dir()

        assert store.prepare_stage(PROJECTS, SnapshotMode.REUSE_IF_PRESENT) is StageAction.FETCH

    def test_declined_overwrite_aborts_and_keeps_files(self, output_dir):
        confirm = RecordingConfirm(answer=False)
        store = SnapshotStore(output_dir, confirm=confirm)
        store.ensure_output_dir()
        store.write_json(APPLICATIONS_SNAPSHOT, [{"id": "a1"}])

        assert store.prepare_stage(APPLICATIONS, SnapshotMode.PROMPT_ON_CONFLICT) is StageAction.ABORT
        assert store.exists(APPLICATIONS_SNAPSHOT)
        assert confirm.prompts == ["applicationsList.json already exists. Do you want to delete it?"]

    def test_accepted_overwrite_asks_per_artifact_and_keeps_files(self, store, confirm):
        store.ensure_output_dir()
        store.write_json(APPLICATIONS_SNAPSHOT, [])
        store.write_csv(APPLICATIONS_CSV, [("id", "Application ID")], [])

        assert store.prepare_stage(APPLICATIONS, SnapshotMode.PROMPT_ON_CONFLICT) is StageAction.FETCH
        assert len(confirm.prompts) == 2
        assert store.exists(APPLICATIONS_SNAPSHOT)
        assert store.exists(APPLICATIONS_CSV)

    def test_always_fetch_does_not_ask(self, output_dir):
        store = SnapshotStore(output_dir, confirm=_never_asked)
        store.ensure_output_dir()
        store.write_json(PROJECTS_SNAPSHOT, [])

        assert store.prepare_stage(PROJECTS, SnapshotMode.ALWAYS_FETCH) is StageAction.FETCH
        assert store.exists(PROJECTS_SNAPSHOT)

    def test_discard_stage_removes_only_that_stage(self, store):
        store.ensure_output_dir()
        store.write_json(APPLICATIONS_SNAPSHOT, [])
        store.write_csv(APPLICATIONS_CSV, [("id", "Application ID")], [])
        store.write_json(PROJECTS_SNAPSHOT, [])

        store.discard_stage(APPLICATIONS)
        store.discard_stage(APPLICATIONS)

        assert not store.exists(APPLICATIONS_SNAPSHOT)
        assert not store.exists(APPLICATIONS_CSV)
        assert store.exists(PROJECTS_SNAPSHOT)


class TestArtifacts:
    """Reading and writing snapshots and exports."""

    def test_json_snapshot_is_pretty_printed(self, store):
        store.ensure_output_dir()

        path = store.write_json(APPLICATIONS_SNAPSHOT, [{"id": "a1", "projects": ["p1"]}])

        text = path.read_text(encoding="utf-8")
        assert text.startswith('[\n  {\n    "id": "a1"')
        assert store.load_snapshot(APPLICATIONS_SNAPSHOT) == [{"id": "a1", "projects": ["p1"]}]

    def test_missing_snapshot_returns_default(self, store):
        store.ensure_output_dir()

        assert store.load_snapshot(PROJECTS_SNAPSHOT, []) == []

    def test_corrupt_snapshot_is_a_filesystem_error(self, store):
        store.ensure_output_dir()
        store.path(PROJECTS_SNAPSHOT).write_text("{not json", encoding="utf-8")

        with pytest.raises(FileSystemError):
            store.load_snapshot(PROJECTS_SNAPSHOT, [])

    def test_csv_header_uses_titles_and_fills_missing_fields(self, store):
        store.ensure_output_dir()
        columns = [("id", "Application ID"), ("name", "Application Name"), ("project", "Project ID")]

        path = store.write_csv("apps.csv", columns, [{"id": "a1", "name": "Payments", "extra": "ignored"}])

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows == [["Application ID", "Application Name", "Project ID"], ["a1", "Payments", ""]]

    def test_non_ascii_names_survive(self, store):
        store.ensure_output_dir()
        store.write_json(PROJECTS_SNAPSHOT, [{"name": "Zürich"}])

        raw = store.path(PROJECTS_SNAPSHOT).read_text(encoding="utf-8")
        assert "Zürich" in raw
        assert json.loads(raw) == [{"name": "Zürich"}]

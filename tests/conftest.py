"""
Shared fixtures: an in-process fake of the Polaris REST API and helpers to
build its JSON:API items.
"""

import logging
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from polaris_auditor import AuditConfig, Credentials
from snapshot_store import SnapshotStore

TENANT = "acme"
TOKEN = "test-token"
PROJECT_URN_FILTER = "filter[role-assignments][object][$eq]"


def application_item(app_id: str, name: str, project_ids: list[str], description: str = "") -> dict[str, Any]:
    return {
        "id": app_id,
        "type": "applications",
        "attributes": {"name": name, "description": description},
        "relationships": {"projects": {"data": [{"id": pid, "type": "projects"} for pid in project_ids]}},
    }


def project_item(
    project_id: str, name: str, properties: dict[str, str] | None = None, project_type: str = "REPOSITORY"
) -> dict[str, Any]:
    return {
        "id": project_id,
        "type": "projects",
        "attributes": {"name": name, "type": project_type, "properties": properties or {}},
        "relationships": {"branches": {"links": {"related": f"/api/common/v0/projects/{project_id}/branches"}}},
    }


def branch_item(branch_id: str, name: str, project_id: str) -> dict[str, Any]:
    return {
        "id": branch_id,
        "type": "branches",
        "attributes": {"name": name},
        "relationships": {"project": {"data": {"id": project_id, "type": "projects"}}},
    }


def user_item(user_id: str, name: str, email: str) -> dict[str, Any]:
    return {"id": user_id, "type": "users", "attributes": {"name": name, "email": email}}


def group_item(group_id: str, groupname: str) -> dict[str, Any]:
    return {"id": group_id, "type": "groups", "attributes": {"groupname": groupname}}


def role_item(role_id: str, name: str = "Contributor") -> dict[str, Any]:
    return {"id": role_id, "type": "roles", "attributes": {"name": name}}


class FakePolaris:
    """Serves applications, projects, branches and role assignments from lists"""

    def __init__(self):
        self.applications: list[dict[str, Any]] = []
        self.projects: list[dict[str, Any]] = []
        self.branches: list[dict[str, Any]] = []
        self.role_assignments: dict[str, list[dict[str, Any]]] = {}

        self.auth_status = 200
        self.token_in_cookie = True
        self.token_in_body = True

        # resource -> {offset: status}
        self.failing_offsets: dict[str, dict[int, int]] = {}
        # resource -> number of 503 answers before serving normally
        self.server_errors: dict[str, int] = {}
        # resource -> {offset: number of 429 answers before serving normally}
        self.rate_limits: dict[str, dict[int, int]] = {}
        self.retry_after = "0"
        self.failing_role_projects: set[str] = set()
        self.paged_role_projects: set[str] = set()

        self.auth_calls: list[tuple[str, dict[str, str]]] = []
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.role_calls: list[tuple[str, list[str]]] = []
        self.base_url = ""

        self.app = web.Application()
        self.app.router.add_post("/{tenant}/api/auth/{version}/authenticate", self.authenticate)
        self.app.router.add_get("/{tenant}/api/common/v0/applications", self.list_applications)
        self.app.router.add_get("/{tenant}/api/common/v0/projects", self.list_projects)
        self.app.router.add_get("/{tenant}/api/common/v0/branches", self.list_branches)
        self.app.router.add_get("/{tenant}/api/auth/v2/role-assignments", self.list_role_assignments)

    def calls_for(self, resource: str) -> list[dict[str, str]]:
        return [query for name, query in self.calls if name == resource]

    async def authenticate(self, request: web.Request) -> web.Response:
        assert request.match_info["tenant"] == TENANT
        form = await request.post()
        self.auth_calls.append((request.match_info["version"], dict(form)))

        if self.auth_status != 200:
            return web.Response(status=self.auth_status, text="invalid credentials")

        response = web.json_response({"jwt": TOKEN} if self.token_in_body else {"status": "ok"})
        if self.token_in_cookie:
            response.set_cookie("access_token", TOKEN, httponly=True)
        return response

    def _page(self, resource: str, request: web.Request, items: list[dict[str, Any]]) -> web.Response:
        assert request.match_info["tenant"] == TENANT
        query = dict(request.query)
        self.calls.append((resource, query))

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return web.Response(status=401, text="missing bearer token")
        if request.headers.get("accept") != "application/vnd.api+json":
            return web.Response(status=406, text="unsupported accept header")

        if self.server_errors.get(resource, 0) > 0:
            self.server_errors[resource] -= 1
            return web.Response(status=503, text="try again")

        limit = int(query.get("page[limit]", 500))
        offset = int(query.get("page[offset]", 0))

        limits = self.rate_limits.get(resource, {})
        if limits.get(offset, 0) > 0:
            limits[offset] -= 1
            return web.Response(status=429, text="slow down", headers={"Retry-After": self.retry_after})

        status = self.failing_offsets.get(resource, {}).get(offset)
        if status:
            return web.Response(status=status, text=f"{resource} unavailable")

        return web.json_response(
            {"data": items[offset : offset + limit], "meta": {"total": len(items)}},
            content_type="application/vnd.api+json",
        )

    async def list_applications(self, request: web.Request) -> web.Response:
        return self._page("applications", request, self.applications)

    async def list_projects(self, request: web.Request) -> web.Response:
        return self._page("projects", request, self.projects)

    async def list_branches(self, request: web.Request) -> web.Response:
        return self._page("branches", request, self.branches)

    async def list_role_assignments(self, request: web.Request) -> web.Response:
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return web.Response(status=401, text="missing bearer token")

        project_id = request.query.get(PROJECT_URN_FILTER, "").removeprefix("urn:x-swip:projects:")
        self.role_calls.append((project_id, request.query.getall("include[role-assignments][]", [])))

        if project_id in self.failing_role_projects:
            return web.Response(status=403, text="forbidden")

        document = {"data": [], "included": self.role_assignments.get(project_id, [])}
        if project_id in self.paged_role_projects:
            document["links"] = {"next": "/api/auth/v2/role-assignments?page[offset]=100"}
        return web.json_response(document, content_type="application/vnd.api+json")


@pytest_asyncio.fixture
async def polaris():
    """A running FakePolaris server"""
    fake = FakePolaris()
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


def make_config(base_url: str, output_dir: Path, **overrides: Any) -> AuditConfig:
    tenant_root = f"{base_url}/{{customer}}"
    credentials = overrides.pop(
        "credentials", Credentials(customer=TENANT, email="auditor@example.com", password="s3cret")
    )
    config = AuditConfig(
        credentials=credentials,
        auth_url_template=f"{tenant_root}/api/auth/v1/authenticate",
        auth_url_v2_template=f"{tenant_root}/api/auth/v2/authenticate",
        applications_url_template=f"{tenant_root}/api/common/v0/applications?page[limit]=25",
        projects_url_template=f"{tenant_root}/api/common/v0/projects",
        branches_url_template=f"{tenant_root}/api/common/v0/branches?page[limit]=500&page[offset]={{offset}}",
        role_assignments_url_template=f"{tenant_root}/api/auth/v2/role-assignments",
        output_dir=output_dir,
        max_retries=0,
    )
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def audit_config(polaris: FakePolaris, output_dir: Path) -> AuditConfig:
    return make_config(polaris.base_url, output_dir)


class RecordingConfirm:
    """Confirmation stand-in that records prompts; scripted answers first, then a fixed one"""

    def __init__(self, answer: bool = True, answers: list[bool] | None = None):
        self.answer = answer
        self.answers = list(answers or [])
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else self.answer


@pytest.fixture
def confirm() -> RecordingConfirm:
    return RecordingConfirm()


@pytest.fixture
def store(output_dir: Path, confirm: RecordingConfirm) -> SnapshotStore:
    return SnapshotStore(output_dir, confirm=confirm)


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by the CLI entry points"""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)

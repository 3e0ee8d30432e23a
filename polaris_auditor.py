"""
Polaris Inventory Auditor
Dumps applications, projects, branches and project role assignments from a
Polaris tenant into JSON snapshots and CSV exports, then builds the combined
project access report.

Key Features:
- Password or access-token authentication
- Offset pagination with a hard page ceiling
- Concurrent resource collection with a bounded number of in-flight requests
- Retries with exponential backoff and rate limit handling
- Snapshot checkpoints with a per-resource reuse/overwrite policy
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import aiohttp

from create_report import ProjectReportBuilder
from polaris_errors import AuthenticationError, ConfigurationError, FileSystemError, ResourceFetchError
from polaris_logging import setup_logging
from polaris_models import (
    APPLICATION_COLUMNS,
    PRINCIPAL_COLUMNS,
    PROJECT_COLUMNS,
    Application,
    Branch,
    Principal,
    Project,
    application_csv_rows,
    normalize_application,
    normalize_branch,
    normalize_project,
    principal_csv_rows,
    project_csv_rows,
    split_role_assignment_document,
)
from snapshot_store import (
    APPLICATIONS,
    BRANCHES,
    DEFAULT_SNAPSHOT_MODES,
    PROJECTS,
    RESOURCE_ORDER,
    ROLE_ASSIGNMENTS,
    STAGE_ARTIFACTS,
    SnapshotMode,
    SnapshotStore,
    StageAction,
    always_confirm,
    console_confirm,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONFIG_PATH = Path("config.json")
DEFAULT_OUTPUT_DIR = Path("output")
DEFAULT_ROLE_ASSIGNMENTS_URL_TEMPLATE = "https://{customer}.polaris.synopsys.com/api/auth/v2/role-assignments"

APPLICATIONS_PAGE_SIZE = 25
PROJECTS_PAGE_SIZE = 500
BRANCHES_PAGE_SIZE = 500

JSON_API_ACCEPT = "application/vnd.api+json"
PROJECT_URN_PREFIX = "urn:x-swip:projects:"

# config.json key -> AuditConfig field
TEMPLATE_KEYS = {
    "authUrlTemplate": "auth_url_template",
    "authUrlV2Template": "auth_url_v2_template",
    "applicationsUrlTemplate": "applications_url_template",
    "projectsUrlTemplate": "projects_url_template",
    "branchesUrlTemplate": "branches_url_template",
}


class AuthMode(Enum):
    """Ways of exchanging credentials for a session token"""

    PASSWORD = "password"
    ACCESS_TOKEN = "accesstoken"


@dataclass
class Credentials:
    """Tenant and login for one Polaris account"""

    customer: str
    email: str
    password: str = ""
    access_token: str = ""

    def auth_mode(self) -> AuthMode:
        """Password wins over access token; neither is a configuration error"""
        if self.password and self.password.strip():
            return AuthMode.PASSWORD
        if self.access_token and self.access_token.strip():
            return AuthMode.ACCESS_TOKEN
        raise ConfigurationError("Neither password nor access token is provided in the config.")


@dataclass
class AuditConfig:
    """Everything a run needs to reach the platform and store its output"""

    credentials: Credentials
    auth_url_template: str
    auth_url_v2_template: str
    applications_url_template: str
    projects_url_template: str
    branches_url_template: str
    role_assignments_url_template: str = DEFAULT_ROLE_ASSIGNMENTS_URL_TEMPLATE
    output_dir: Path = DEFAULT_OUTPUT_DIR
    max_concurrent: int = 10
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_base: float = 2.0
    max_pages: int = 1000
    snapshot_modes: dict[str, SnapshotMode] = field(default_factory=lambda: dict(DEFAULT_SNAPSHOT_MODES))

    def resolve(self, template: str) -> str:
        """Substitute the tenant into a URL template"""
        return template.replace("{customer}", self.credentials.customer)

    @property
    def auth_url(self) -> str:
        return self.resolve(self.auth_url_template)

    @property
    def auth_url_v2(self) -> str:
        return self.resolve(self.auth_url_v2_template)

    @property
    def applications_url(self) -> str:
        return self.resolve(self.applications_url_template)

    @property
    def projects_url(self) -> str:
        return self.resolve(self.projects_url_template)

    @property
    def branches_url(self) -> str:
        return self.resolve(self.branches_url_template)

    @property
    def role_assignments_url(self) -> str:
        return self.resolve(self.role_assignments_url_template)

    def validate(self) -> None:
        """Fail before any network call if the run could not authenticate or fetch"""
        if not self.credentials.customer:
            raise ConfigurationError("Customer tenant is not configured.")
        if not self.credentials.email:
            raise ConfigurationError("Email address is not configured.")
        self.credentials.auth_mode()

        missing = [key for key, attr in TEMPLATE_KEYS.items() if not getattr(self, attr)]
        if missing:
            raise ConfigurationError(f"Missing required URL templates: {', '.join(missing)}")
        if self.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1.")
        if self.max_pages < 1:
            raise ConfigurationError("max_pages must be at least 1.")


def _env_number(environ: dict[str, str], name: str, cast: Callable[[str], T]) -> T | None:
    value = environ.get(name)
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


def load_config(path: str | Path | None = None, environ: dict[str, str] | None = None) -> AuditConfig:
    """
    Load the run configuration from config.json and the environment

    Args:
        path: JSON config file; the default ./config.json may be absent
        environ: Environment mapping, os.environ when None

    Returns:
        Validated AuditConfig

    """
    environ = dict(os.environ) if environ is None else environ
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.is_file():
        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a JSON object")
    elif path:
        raise ConfigurationError(f"Config file {config_path} does not exist")

    credentials = Credentials(
        customer=environ.get("POLARIS_CUSTOMER") or data.get("customer", ""),
        email=environ.get("POLARIS_EMAIL") or data.get("email", ""),
        password=environ.get("POLARIS_PASSWORD") or data.get("password", ""),
        access_token=environ.get("POLARIS_ACCESS_TOKEN") or data.get("accesstoken", ""),
    )

    templates = {attr: data.get(key, "") for key, attr in TEMPLATE_KEYS.items()}
    config = AuditConfig(
        credentials=credentials,
        role_assignments_url_template=data.get("roleAssignmentsUrlTemplate") or DEFAULT_ROLE_ASSIGNMENTS_URL_TEMPLATE,
        output_dir=Path(environ.get("POLARIS_OUTPUT_DIR") or data.get("outputDirectory") or DEFAULT_OUTPUT_DIR),
        **templates,
    )

    max_concurrent = _env_number(environ, "POLARIS_MAX_CONCURRENT", int)
    if max_concurrent is not None:
        config.max_concurrent = max_concurrent
    request_timeout = _env_number(environ, "POLARIS_REQUEST_TIMEOUT", float)
    if request_timeout is not None:
        config.request_timeout = request_timeout

    config.validate()
    return config


def extract_session_token(set_cookie_headers: list[str], body: str) -> str | None:
    """
    Find the session token in an authentication response

    Args:
        set_cookie_headers: Every Set-Cookie header value of the response
        body: Raw response body

    Returns:
        The access_token cookie value, else the body's "jwt" field, else None

    """
    for cookie in set_cookie_headers:
        if cookie.startswith("access_token="):
            token = cookie.split(";", 1)[0].partition("=")[2]
            if token:
                return token

    try:
        payload = json.loads(body) if body else None
    except json.JSONDecodeError:
        return None
    if isinstance(payload, dict) and payload.get("jwt"):
        return payload["jwt"]
    return None


class PolarisAuditor:
    """Collects the Polaris inventory and role assignments into an output directory"""

    def __init__(self, config: AuditConfig, store: SnapshotStore):
        """
        Initialize the auditor

        Args:
            config: Validated run configuration
            store: Output directory the snapshots and exports go to

        """
        self.config = config
        self.store = store
        self.semaphore = asyncio.Semaphore(config.max_concurrent)
        self.token: str | None = None

        # Statistics
        self.stats = {
            "api_calls": 0,
            "api_errors": 0,
            "retries": 0,
            "rate_limit_hits": 0,
            "skipped_items": 0,
            "applications": 0,
            "projects": 0,
            "branches": 0,
            "principals": 0,
        }

        # Error tracking
        self.errors: list[dict[str, Any]] = []

    async def _make_request(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: dict[str, str] | list[tuple[str, str]] | None = None,
        context: str = "",
    ) -> Any:
        """
        Make an authenticated GET request with retries

        Args:
            session: aiohttp session
            url: Absolute resource URL
            params: Query parameters
            context: Context string for logging

        Returns:
            Parsed JSON body

        Raises:
            ResourceFetchError: when the request fails for good

        """
        headers = {
            "Authorization": f"Bearer {self.token}",
            "accept": JSON_API_ACCEPT,
        }
        max_retries = self.config.max_retries
        retry_count = 0

        while True:
            try:
                # One concurrency slot per attempt; backoff waits happen outside it
                async with self.semaphore:
                    self.stats["api_calls"] += 1

                    async with session.get(url, headers=headers, params=params) as response:
                        # Handle rate limiting
                        if response.status == 429 and retry_count < max_retries:
                            self.stats["rate_limit_hits"] += 1
                            wait_time = self._retry_after(response)
                            logger.warning(
                                f"Rate limited ({context}). Waiting {wait_time}s... "
                                f"[Retry {retry_count + 1}/{max_retries}]"
                            )

                        # Handle server errors with retry
                        elif response.status >= 500 and retry_count < max_retries:
                            wait_time = self.config.backoff_base**retry_count
                            logger.warning(
                                f"Server error: {url} ({context}) - "
                                f"Status: {response.status}. Retrying in {wait_time}s... "
                                f"[Retry {retry_count + 1}/{max_retries}]"
                            )

                        elif not 200 <= response.status < 300:
                            error_text = await response.text()
                            raise self._fail("http_error", url, context, response.status, error_text)

                        else:
                            # Success - parse JSON
                            try:
                                return await response.json(content_type=None)
                            except json.JSONDecodeError as e:
                                text = await response.text()
                                logger.error(f"JSON decode error: {url} ({context}) - {e} - Response: {text[:200]}")
                                raise self._fail("json_error", url, context, response.status, text[:200]) from e

            except (TimeoutError, aiohttp.ClientError) as e:
                if retry_count >= max_retries:
                    raise self._fail("network_error", url, context, 0, f"{type(e).__name__}: {e}") from e
                wait_time = self.config.backoff_base**retry_count
                logger.warning(
                    f"Request failed: {url} ({context}) - {type(e).__name__}: {e}. "
                    f"Retrying in {wait_time}s... [Retry {retry_count + 1}/{max_retries}]"
                )

            await self._backoff(wait_time)
            retry_count += 1

    async def _backoff(self, seconds: float) -> None:
        self.stats["retries"] += 1
        await asyncio.sleep(seconds)

    @staticmethod
    def _retry_after(response: aiohttp.ClientResponse) -> float:
        try:
            return float(response.headers.get("Retry-After", 60))
        except ValueError:
            return 60.0

    def _fail(self, error_type: str, url: str, context: str, status: int, message: str) -> ResourceFetchError:
        """Record a failed request and build the error the caller raises"""
        self.stats["api_errors"] += 1
        self._log_error(error_type, url, context, status, message)
        return ResourceFetchError(f"{context}: HTTP {status} from {url}", status=status, body=message)

    def _log_error(self, error_type: str, url: str, context: str, status: int, message: str) -> None:
        """Log an error for later review"""
        self.errors.append(
            {
                "timestamp": datetime.now().isoformat(),
                "error_type": error_type,
                "url": url,
                "context": context,
                "status": status,
                "message": message,
            }
        )

    async def authenticate(self, session: aiohttp.ClientSession) -> str:
        """
        Exchange the configured credentials for a session token

        The password flow posts to the v1 endpoint, the access-token flow to the
        v2 endpoint. Authentication is attempted exactly once.

        Returns:
            Bearer token for the rest of the run

        """
        credentials = self.config.credentials
        if credentials.auth_mode() is AuthMode.PASSWORD:
            url = self.config.auth_url
            form = {"email": credentials.email, "password": credentials.password}
        else:
            url = self.config.auth_url_v2
            form = {"email": credentials.email, "accesstoken": credentials.access_token}
            logger.info(f"Using access token for authentication: {url}")

        logger.info("Sending authentication request...")
        self.stats["api_calls"] += 1
        try:
            async with session.post(url, data=form, headers={"Accept": "application/json"}) as response:
                body = await response.text()
                logger.info(f"Authentication response received: {response.status} {response.reason}")

                if not 200 <= response.status < 300:
                    self.stats["api_errors"] += 1
                    self._log_error("auth_error", url, "authenticate", response.status, body)
                    raise AuthenticationError(
                        f"Authentication failed with HTTP {response.status}", status=response.status, body=body
                    )

                token = extract_session_token(response.headers.getall("Set-Cookie", []), body)
        except (TimeoutError, aiohttp.ClientError) as e:
            self.stats["api_errors"] += 1
            self._log_error("auth_error", url, "authenticate", 0, str(e))
            raise AuthenticationError(f"Authentication request failed: {type(e).__name__}: {e}") from e

        if not token:
            self.stats["api_errors"] += 1
            self._log_error("auth_error", url, "authenticate", response.status, "no token in response")
            raise AuthenticationError("No access token found in the response.", status=response.status, body=body)
        return token

    def _normalize(self, normalize: Callable[[dict[str, Any]], T], item: Any, context: str) -> T | None:
        if not isinstance(item, dict):
            self.stats["skipped_items"] += 1
            logger.warning(f"Skipping malformed {context} item: expected an object, got {item!r:.100}")
            return None
        try:
            return normalize(item)
        except (KeyError, TypeError) as e:
            self.stats["skipped_items"] += 1
            logger.warning(f"Skipping malformed {context} item {item.get('id', '?')}: missing {e}")
            return None

    async def fetch_paginated(
        self,
        session: aiohttp.ClientSession,
        url: str,
        page_size: int,
        normalize: Callable[[dict[str, Any]], T],
        context: str,
    ) -> list[T]:
        """
        Fetch every page of a resource collection

        Pages are requested one after another. A URL containing ``{offset}``
        gets the offset substituted; any other URL is reduced to its base and
        paged with ``page[limit]``/``page[offset]`` query parameters.

        Args:
            session: aiohttp session
            url: Resource URL or URL template
            page_size: Items requested per page
            normalize: Maps one raw item to its record
            context: Resource name for logging

        Returns:
            Normalized items in server order; partial when a page failed

        """
        uses_template = "{offset}" in url
        base_url = url if uses_template else url.split("?", 1)[0]
        items: list[T] = []
        offset = 0
        pages = 0

        while True:
            if pages >= self.config.max_pages:
                logger.warning(
                    f"Stopping {context} pagination after {pages} pages (max_pages); "
                    f"{len(items)} items collected"
                )
                break

            if uses_template:
                page_url, params = base_url.replace("{offset}", str(offset)), None
            else:
                page_url, params = base_url, {"page[limit]": str(page_size), "page[offset]": str(offset)}

            logger.info(f"Fetching {context} with offset={offset}...")
            try:
                document = await self._make_request(session, page_url, params=params, context=f"{context}:{offset}")
            except ResourceFetchError as e:
                logger.error(f"{e} - Response: {e.body[:500]}")
                logger.warning(f"Stopping {context} pagination; keeping {len(items)} items already fetched")
                break

            pages += 1
            page = document.get("data") if isinstance(document, dict) else None
            if not isinstance(page, list):
                if page is not None:
                    logger.warning(f"Unexpected {context} page at offset={offset}: data is not a list")
                page = []
            for raw in page:
                record = self._normalize(normalize, raw, context)
                if record is not None:
                    items.append(record)

            if len(page) < page_size:
                break
            offset += page_size

        logger.info(f"Fetched {len(items)} {context} in {pages} pages")
        return items

    async def collect_applications(self, session: aiohttp.ClientSession) -> list[Application]:
        return await self.fetch_paginated(
            session, self.config.applications_url, APPLICATIONS_PAGE_SIZE, normalize_application, APPLICATIONS
        )

    async def collect_projects(self, session: aiohttp.ClientSession) -> list[Project]:
        return await self.fetch_paginated(
            session, self.config.projects_url, PROJECTS_PAGE_SIZE, normalize_project, PROJECTS
        )

    async def collect_branches(self, session: aiohttp.ClientSession) -> list[Branch]:
        return await self.fetch_paginated(
            session, self.config.branches_url, BRANCHES_PAGE_SIZE, normalize_branch, BRANCHES
        )

    async def get_project_principals(self, session: aiohttp.ClientSession, project: Project) -> list[Principal]:
        """
        Get the users and groups holding a role on one project

        Args:
            session: aiohttp session
            project: Project to filter role assignments by

        Returns:
            Users followed by groups; empty if the request failed

        """
        params = [
            ("filter[role-assignments][object][$eq]", f"{PROJECT_URN_PREFIX}{project.id}"),
            ("include[role-assignments][]", "role"),
            ("include[role-assignments][]", "user"),
            ("include[role-assignments][]", "group"),
        ]

        logger.info(f"Fetching role assignments for project {project.name} (ID: {project.id})...")
        try:
            document = await self._make_request(
                session, self.config.role_assignments_url, params=params, context=f"role_assignments:{project.name}"
            )
        except ResourceFetchError as e:
            logger.error(f"{e} - Response: {e.body[:500]}")
            return []

        if not isinstance(document, dict):
            self.stats["skipped_items"] += 1
            logger.warning(f"Skipping malformed role assignments of project {project.name}: not a JSON object")
            return []

        if (document.get("links") or {}).get("next"):
            # TODO: follow links.next once the role-assignments endpoint documents its page size
            logger.warning(f"Role assignments for project {project.name} span several pages; only the first is read")

        try:
            return split_role_assignment_document(document, project)
        except (KeyError, TypeError) as e:
            self.stats["skipped_items"] += 1
            logger.warning(f"Skipping malformed role assignments of project {project.name}: missing {e}")
            return []

    async def collect_role_assignments(self, session: aiohttp.ClientSession, projects: list[Project]) -> list[Principal]:
        """Fetch role assignments of every project, keeping project order"""
        results = await asyncio.gather(*(self.get_project_principals(session, project) for project in projects))
        return [principal for principals in results for principal in principals]

    async def _run_stage(
        self,
        resource: str,
        action: StageAction,
        collect: Callable[[], Awaitable[list[Any]]],
        from_dict: Callable[[dict[str, Any]], Any],
    ) -> list[Any]:
        """Reuse a stage's snapshot or fetch and persist it"""
        snapshot = STAGE_ARTIFACTS[resource][0]
        if action is StageAction.REUSE:
            records = [from_dict(item) for item in self.store.load_snapshot(snapshot, [])]
        else:
            records = await collect()
            if records:
                self._persist(resource, records)
            else:
                logger.warning(f"No {resource} fetched; {snapshot} not written")

        self.stats[STAT_KEYS[resource]] = len(records)
        return records

    def _persist(self, resource: str, records: list[Any]) -> None:
        snapshot, export = STAGE_ARTIFACTS[resource]
        self.store.discard_stage(resource)
        self.store.write_json(snapshot, [record.to_dict() for record in records])

        # The branch export needs project names and is written by the report builder
        if resource in CSV_EXPORTS:
            columns, to_rows = CSV_EXPORTS[resource]
            self.store.write_csv(export, columns, to_rows(records))

    async def run_audit(self) -> bool:
        """
        Run the complete collection process

        Returns:
            True when every stage produced data, False when the pipeline stopped early

        """
        start_time = datetime.now()
        logger.info(f"Starting Polaris inventory audit at {start_time}")
        logger.info(f"Tenant: {self.config.credentials.customer}")
        logger.info(f"Max concurrent requests: {self.config.max_concurrent}")
        logger.info(f"Output directory: {self.store.output_dir}")

        self.store.ensure_output_dir()

        # Prompts run one at a time, before any request goes out
        actions: dict[str, StageAction] = {}
        for resource in RESOURCE_ORDER:
            mode = self.config.snapshot_modes.get(resource, DEFAULT_SNAPSHOT_MODES[resource])
            actions[resource] = self.store.prepare_stage(resource, mode)
            if actions[resource] is StageAction.ABORT:
                logger.info("Exiting without making changes.")
                return False

        connector = aiohttp.TCPConnector(limit=self.config.max_concurrent)
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)

        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            if StageAction.FETCH in actions.values():
                try:
                    self.token = await self.authenticate(session)
                except AuthenticationError as e:
                    logger.error(f"{e} - Status: {e.status} - {e.body[:500]}")
                    self._log_final_stats(start_time, success=False)
                    return False

            applications, projects, branches = await asyncio.gather(
                self._run_stage(
                    APPLICATIONS, actions[APPLICATIONS], lambda: self.collect_applications(session),
                    Application.from_dict,
                ),
                self._run_stage(
                    PROJECTS, actions[PROJECTS], lambda: self.collect_projects(session), Project.from_dict
                ),
                self._run_stage(
                    BRANCHES, actions[BRANCHES], lambda: self.collect_branches(session), Branch.from_dict
                ),
            )

            if not applications or not projects:
                logger.error("No applications or projects collected. Skipping the remaining stages.")
                self._log_final_stats(start_time, success=False)
                return False

            principals = await self._run_stage(
                ROLE_ASSIGNMENTS,
                actions[ROLE_ASSIGNMENTS],
                lambda: self.collect_role_assignments(session, projects),
                Principal.from_dict,
            )

        if not principals or not branches:
            logger.error("No role assignments or branches collected. Report not generated.")
            self._log_final_stats(start_time, success=False)
            return False

        self._log_final_stats(start_time, success=True)
        return True

    def _log_final_stats(self, start_time: datetime, success: bool) -> None:
        """Log final audit statistics"""
        end_time = datetime.now()
        logger.info("=" * 80)
        logger.info("AUDIT COMPLETED SUCCESSFULLY" if success else "AUDIT STOPPED EARLY")
        logger.info("=" * 80)
        logger.info(f"Start time: {start_time}")
        logger.info(f"End time: {end_time}")
        logger.info(f"Total duration: {end_time - start_time}")
        logger.info("FINAL STATISTICS:")
        logger.info(f"  Applications: {self.stats['applications']}")
        logger.info(f"  Projects: {self.stats['projects']}")
        logger.info(f"  Branches: {self.stats['branches']}")
        logger.info(f"  Principals: {self.stats['principals']}")
        logger.info(f"  Skipped malformed items: {self.stats['skipped_items']}")
        logger.info(f"  Total API calls: {self.stats['api_calls']}")
        logger.info(f"  API errors encountered: {self.stats['api_errors']}")
        logger.info(f"  Retries: {self.stats['retries']}")
        logger.info(f"  Rate limit hits: {self.stats['rate_limit_hits']}")

        if self.errors:
            logger.warning(f"{len(self.errors)} errors occurred during audit.")
            error_file = self.store.write_json(
                f"polaris_audit_errors_{end_time.strftime('%Y%m%d_%H%M%S')}.json", self.errors
            )
            logger.warning(f"Detailed errors saved to: {error_file}")

        logger.info("=" * 80)


STAT_KEYS = {
    APPLICATIONS: "applications",
    PROJECTS: "projects",
    BRANCHES: "branches",
    ROLE_ASSIGNMENTS: "principals",
}

CSV_EXPORTS = {
    APPLICATIONS: (APPLICATION_COLUMNS, application_csv_rows),
    PROJECTS: (PROJECT_COLUMNS, project_csv_rows),
    ROLE_ASSIGNMENTS: (PRINCIPAL_COLUMNS, principal_csv_rows),
}


def _snapshot_mode_override(value: str) -> tuple[str, SnapshotMode]:
    resource, _, mode = value.partition("=")
    if resource not in DEFAULT_SNAPSHOT_MODES:
        raise argparse.ArgumentTypeError(f"unknown resource {resource!r}; choose from {', '.join(RESOURCE_ORDER)}")
    try:
        return resource, SnapshotMode(mode)
    except ValueError:
        choices = ", ".join(m.value for m in SnapshotMode)
        raise argparse.ArgumentTypeError(f"unknown snapshot mode {mode!r}; choose from {choices}") from None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export the Polaris application, project, branch and role inventory to CSV."
    )
    parser.add_argument("config", nargs="?", help="Path to config.json (default: ./config.json)")
    parser.add_argument("-y", "--yes", action="store_true", help="Overwrite existing artifacts without asking")
    parser.add_argument(
        "--mode",
        action="append",
        default=[],
        type=_snapshot_mode_override,
        metavar="RESOURCE=MODE",
        help="Snapshot policy for one resource, e.g. projects=always-fetch",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    config.snapshot_modes.update(dict(args.mode))
    store = SnapshotStore(config.output_dir, confirm=always_confirm if args.yes else console_confirm)
    auditor = PolarisAuditor(config, store)

    try:
        log_file = setup_logging(config.output_dir, level=args.log_level)
        logger.info(f"Logging to {log_file}")
        if not asyncio.run(auditor.run_audit()):
            return 1
        ProjectReportBuilder(store).generate()
    except FileSystemError as e:
        logger.error(f"File system error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Audit interrupted by user")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

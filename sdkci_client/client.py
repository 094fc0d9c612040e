"""
HTTP client for the SDK build API.

Requests are made with a blocking ``requests.Session``; every public method
is async and runs the request in a worker thread so that the build engine
can poll several builds concurrently from one event loop.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import quote

import requests

from sdkci_common.api import BuildAPI, Revision
from sdkci_common.errors import BuildAPIError, NotFoundError
from sdkci_common.models import Build, BuildComparison, BuildCreation, Diagnostic

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.stainless.com"
DEFAULT_TIMEOUT = 60
# Writing the config files of very large specs can take a while.
CREATE_BUILD_TIMEOUT = 3 * 60
DIAGNOSTICS_PAGE_SIZE = 100

NO_CHANGES_MESSAGE = "No changes to commit"


def is_no_changes_error(error: BuildAPIError) -> bool:
    """Return True if the API rejected a build because nothing changed."""
    return error.status_code == 400 and NO_CHANGES_MESSAGE in str(error)


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


def _first_file_content(files: dict[str, Any] | None) -> str | None:
    """Return the content of the first file in a {name: {"content": ...}} map."""
    for file in (files or {}).values():
        if isinstance(file, dict) and file.get("content") is not None:
            return file["content"]
    return None


def _revision_params(revision: dict[str, dict[str, str]]) -> dict[str, str]:
    """Flatten a revision filter into ``revision[file][key]`` query params."""
    params = {}
    for file_name, attributes in revision.items():
        for key, value in attributes.items():
            params[f"revision[{file_name}][{key}]"] = value
    return params


class BuildAPIClient(BuildAPI):
    """
    Client for the hosted SDK build API.

    Authenticates with a bearer API key and tags every request with the CI
    platform and action that made it.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        platform: str | None = None,
        action: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key used as a bearer token
            base_url: Base URL of the build API
            platform: CI platform header value ("github-actions" or "gitlab-ci")
            action: Name of the action making the requests
            timeout: Default request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "User-Agent": f"sdkci/{__version__}",
                "Accept": "application/json",
            }
        )
        if action:
            self.session.headers["X-Stainless-Action"] = action
            self.session.headers["X-Stainless-Platform"] = platform or "github-actions"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Make a blocking request and return the decoded JSON body."""
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise BuildAPIError(f"Error calling build API ({method} {path}): {e}")

        if response.status_code == 404:
            raise NotFoundError(
                f"Not found: {method} {path}: {_error_detail(response)}", 404
            )
        if not response.ok:
            raise BuildAPIError(
                f"Build API returned {response.status_code} for {method} {path}: "
                f"{_error_detail(response)}",
                response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def create_build(
        self,
        project: str,
        *,
        revision: Revision,
        branch: str | None = None,
        commit_message: str | None = None,
        target_commit_messages: dict[str, str] | None = None,
        allow_empty: bool = True,
    ) -> BuildCreation:
        body: dict[str, Any] = {
            "project": project,
            "revision": revision,
            "allow_empty": allow_empty,
        }
        if branch:
            body["branch"] = branch
        if commit_message:
            body["commit_message"] = commit_message
        if target_commit_messages:
            body["target_commit_messages"] = target_commit_messages

        try:
            data = await self._call(
                "POST", "/v0/builds", json_body=body, timeout=CREATE_BUILD_TIMEOUT
            )
        except BuildAPIError as e:
            if is_no_changes_error(e):
                return BuildCreation.no_changes(str(e))
            raise
        return BuildCreation.created(Build.from_dict(data))

    async def compare_builds(
        self,
        project: str,
        *,
        base: dict[str, Any],
        head: dict[str, Any],
    ) -> BuildComparison:
        body = {"project": project, "base": base, "head": head}
        try:
            data = await self._call(
                "POST",
                "/v0/builds/compare",
                json_body=body,
                timeout=CREATE_BUILD_TIMEOUT,
            )
        except BuildAPIError as e:
            if is_no_changes_error(e):
                return BuildComparison.no_changes(str(e))
            raise
        return BuildComparison.created(
            base=Build.from_dict(data["base"]), head=Build.from_dict(data["head"])
        )

    async def retrieve_build(self, build_id: str) -> Build:
        data = await self._call("GET", f"/v0/builds/{quote(build_id, safe='')}")
        return Build.from_dict(data)

    async def list_diagnostics(self, build_id: str) -> AsyncIterator[Diagnostic]:
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"limit": DIAGNOSTICS_PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            page = await self._call(
                "GET",
                f"/v0/builds/{quote(build_id, safe='')}/diagnostics",
                params=params,
            )
            for item in page.get("data", []):
                yield Diagnostic.from_dict(item)
            cursor = page.get("next_cursor")
            if not cursor:
                break

    async def unwrap_file(self, file: dict[str, Any]) -> str:
        if file.get("type") == "content" or "content" in file:
            return file["content"]

        url = file["url"]

        def download() -> str:
            # Signed download URLs must not receive the API credentials.
            try:
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise BuildAPIError(f"Error downloading file: {e}")
            return response.text

        return await asyncio.to_thread(download)

    async def guess_config(
        self, project: str, *, spec: str, branch: str | None = None
    ) -> str | None:
        body: dict[str, Any] = {"spec": spec}
        if branch:
            body["branch"] = branch
        files = await self._call(
            "POST",
            f"/v0/projects/{quote(project, safe='')}/configs/guess",
            json_body=body,
            timeout=CREATE_BUILD_TIMEOUT,
        )
        return _first_file_content(files)

    async def retrieve_config(self, project: str, *, branch: str) -> str | None:
        files = await self._call(
            "GET",
            f"/v0/projects/{quote(project, safe='')}/configs",
            params={"branch": branch},
        )
        return _first_file_content(files)

    async def create_branch(
        self, project: str, *, branch: str, branch_from: str, force: bool = False
    ) -> dict[str, Any]:
        return await self._call(
            "POST",
            f"/v0/projects/{quote(project, safe='')}/branches",
            json_body={"branch": branch, "branch_from": branch_from, "force": force},
        )

    async def retrieve_branch(self, project: str, branch: str) -> dict[str, Any] | None:
        try:
            return await self._call(
                "GET",
                f"/v0/projects/{quote(project, safe='')}/branches/{quote(branch, safe='')}",
            )
        except NotFoundError:
            return None

    async def list_builds(
        self,
        project: str,
        *,
        branch: str | None = None,
        revision: dict[str, dict[str, str]] | None = None,
        limit: int = 1,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"project": project, "limit": limit}
        if branch:
            params["branch"] = branch
        if revision:
            params.update(_revision_params(revision))
        page = await self._call("GET", "/v0/builds", params=params)
        return page.get("data", [])

    async def generate_commit_message(
        self, project: str, *, target: str, base_ref: str, head_ref: str
    ) -> str:
        data = await self._call(
            "POST",
            f"/v0/projects/{quote(project, safe='')}/generate_commit_message",
            params={"target": target},
            json_body={"base_ref": base_ref, "head_ref": head_ref},
        )
        return data["ai_commit_message"]

    async def list_projects(self, limit: int = 6) -> list[dict[str, Any]]:
        page = await self._call("GET", "/v0/projects", params={"limit": limit})
        return page.get("data", [])

    async def retrieve_org(self, org: str) -> dict[str, Any]:
        return await self._call("GET", f"/v0/orgs/{quote(org, safe='')}")

    async def report_action_result(self, body: dict[str, Any]) -> None:
        await self._call("POST", "/api/reports/action-result", json_body=body)

"""
Shared fixtures for the unit tests.

Provides an in-memory BuildAPI that records every call, so engine and
action tests can run without a build API server.
"""

from typing import Any

import pytest

from sdkci_common.api import BuildAPI
from sdkci_common.models import Build, BuildComparison, BuildCreation, Diagnostic


class FakeBuildAPI(BuildAPI):
    """
    In-memory build API.

    ``builds`` maps a build ID to the sequence of states returned by
    successive ``retrieve_build`` calls; the last state repeats forever.
    """

    def __init__(self):
        self.builds: dict[str, list[Build]] = {}
        self.diagnostics: dict[str, list[Diagnostic]] = {}
        self.diagnostics_error: Exception | None = None
        self.creation: BuildCreation | None = None
        self.comparison: BuildComparison | None = None
        self.guessed_config: str | None = None
        self.configs: dict[str, str] = {}
        self.branches: dict[str, dict[str, Any]] = {}
        self.builds_by_branch: dict[tuple[str | None, bool], list[dict[str, Any]]] = {}
        self.commit_messages: dict[str, str | Exception] = {}
        self.projects: list[dict[str, Any]] = []
        self.org: dict[str, Any] | Exception = {}

        self.calls: list[tuple[str, Any]] = []
        self.reports: list[dict[str, Any]] = []

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def create_build(self, project, *, revision, **kwargs) -> BuildCreation:
        self.calls.append(("create_build", {"project": project, "revision": revision, **kwargs}))
        return self.creation

    async def compare_builds(self, project, *, base, head) -> BuildComparison:
        self.calls.append(("compare_builds", {"project": project, "base": base, "head": head}))
        return self.comparison

    async def retrieve_build(self, build_id: str) -> Build:
        self.calls.append(("retrieve_build", build_id))
        states = self.builds[build_id]
        if len(states) > 1:
            return states.pop(0)
        return states[0]

    async def list_diagnostics(self, build_id: str):
        self.calls.append(("list_diagnostics", build_id))
        if self.diagnostics_error is not None:
            raise self.diagnostics_error
        for diagnostic in self.diagnostics.get(build_id, []):
            yield diagnostic

    async def unwrap_file(self, file: dict[str, Any]) -> str:
        self.calls.append(("unwrap_file", file))
        if file.get("type") == "content":
            return file["content"]
        return f"downloaded from {file['url']}"

    async def guess_config(self, project, *, spec, branch=None) -> str | None:
        self.calls.append(("guess_config", {"spec": spec, "branch": branch}))
        return self.guessed_config

    async def retrieve_config(self, project, *, branch) -> str | None:
        self.calls.append(("retrieve_config", branch))
        return self.configs.get(branch)

    async def create_branch(self, project, *, branch, branch_from, force=False):
        self.calls.append(
            ("create_branch", {"branch": branch, "branch_from": branch_from, "force": force})
        )
        info = {"branch": branch, "config_commit": branch_from}
        self.branches[branch] = info
        return info

    async def retrieve_branch(self, project, branch) -> dict[str, Any] | None:
        self.calls.append(("retrieve_branch", branch))
        return self.branches.get(branch)

    async def list_builds(self, project, *, branch=None, revision=None, limit=1):
        self.calls.append(("list_builds", {"branch": branch, "revision": revision}))
        return self.builds_by_branch.get((branch, revision is not None), [])[:limit]

    async def generate_commit_message(self, project, *, target, base_ref, head_ref) -> str:
        self.calls.append(
            ("generate_commit_message", {"target": target, "base": base_ref, "head": head_ref})
        )
        message = self.commit_messages[target]
        if isinstance(message, Exception):
            raise message
        return message

    async def list_projects(self, limit: int = 6) -> list[dict[str, Any]]:
        self.calls.append(("list_projects", limit))
        return self.projects[:limit]

    async def retrieve_org(self, org: str) -> dict[str, Any]:
        self.calls.append(("retrieve_org", org))
        if isinstance(self.org, Exception):
            raise self.org
        return self.org

    async def report_action_result(self, body: dict[str, Any]) -> None:
        self.reports.append(body)


@pytest.fixture
def fake_api():
    """A fresh in-memory build API."""
    return FakeBuildAPI()


@pytest.fixture(autouse=True)
def clean_action_env(monkeypatch):
    """Keep CI variables of the machine running the tests out of the tests."""
    for name in (
        "GITHUB_OUTPUT",
        "GITLAB_CI",
        "LOG_LEVEL",
        "INPUT_LOG_LEVEL",
        "STAINLESS_API_KEY",
        "INPUT_STAINLESS_API_KEY",
        "STAINLESS_API_URL",
        "INPUT_STAINLESS_API_URL",
        "POLLING_INTERVAL_SECONDS",
        "INPUT_POLLING_INTERVAL_SECONDS",
        "MAX_POLLING_SECONDS",
        "INPUT_MAX_POLLING_SECONDS",
        "STAINLESS_DISABLE_TELEMETRY",
    ):
        monkeypatch.delenv(name, raising=False)

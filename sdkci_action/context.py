"""
CI context for GitHub Actions and GitLab CI.

The context is read from the environment once, when an action starts, and
passed explicitly to everything that needs it.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from sdkci_common.errors import ConfigurationError

logger = logging.getLogger(__name__)

Provider = Literal["github", "gitlab"]


@dataclass
class CIContext:
    """
    Where an action is running.

    ``host`` is the full URL of the code host (e.g. https://github.com),
    ``api_url`` its API base URL and ``run_url`` the URL of the CI run.
    """

    provider: Provider
    host: str
    owner: str
    repo: str
    api_url: str
    run_url: str
    ci_name: str  # "GitHub Actions" or "GitLab CI"
    pr_name: str  # "PR" or "MR"
    pr_number: int | None = None
    default_branch: str | None = None
    ref_name: str | None = None
    sha: str | None = None
    project_id: str | None = None  # GitLab only

    @property
    def platform_header(self) -> str:
        """Value of the X-Stainless-Platform header for this provider."""
        return "gitlab-ci" if self.provider == "gitlab" else "github-actions"


def get_provider(environ: Mapping[str, str] | None = None) -> Provider:
    """Detect the CI provider; GitHub is assumed when neither is detected."""
    environ = os.environ if environ is None else environ
    if environ.get("GITLAB_CI") == "true":
        return "gitlab"
    return "github"


def _parse_int(value: object) -> int | None:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


def get_github_context(environ: Mapping[str, str]) -> CIContext:
    """
    Build the context of a GitHub Actions run.

    Raises:
        ConfigurationError: If the repository or run id is missing, or the
            event payload cannot be parsed
    """
    owner, _, repo = environ.get("GITHUB_REPOSITORY", "").partition("/")
    run_id = environ.get("GITHUB_RUN_ID")
    if not owner or not repo or not run_id:
        raise ConfigurationError(
            "Expected env vars GITHUB_REPOSITORY and GITHUB_RUN_ID to be set."
        )

    host = environ.get("GITHUB_SERVER_URL") or "https://github.com"
    api_url = environ.get("GITHUB_API_URL") or "https://api.github.com"

    payload: dict = {}
    event_path = environ.get("GITHUB_EVENT_PATH")
    if event_path and os.path.exists(event_path):
        try:
            with open(event_path, encoding="utf-8") as f:
                payload = json.load(f) or {}
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse GitHub event: {e}") from e

    default_branch = (payload.get("repository") or {}).get("default_branch")
    pr_number = _parse_int(
        (payload.get("pull_request") or {}).get("number") or environ.get("PR_NUMBER")
    )

    return CIContext(
        provider="github",
        host=host,
        owner=owner,
        repo=repo,
        api_url=api_url,
        run_url=f"{host}/{owner}/{repo}/actions/runs/{run_id}",
        ci_name="GitHub Actions",
        pr_name="PR",
        pr_number=pr_number,
        default_branch=default_branch if isinstance(default_branch, str) else None,
        ref_name=environ.get("GITHUB_REF_NAME") or None,
        sha=environ.get("GITHUB_SHA") or None,
    )


def get_gitlab_context(environ: Mapping[str, str]) -> CIContext:
    """
    Build the context of a GitLab CI job.

    Raises:
        ConfigurationError: If the project or job variables are missing
    """
    owner = environ.get("CI_PROJECT_NAMESPACE")
    repo = environ.get("CI_PROJECT_NAME")
    run_url = environ.get("CI_JOB_URL")
    project_id = environ.get("CI_PROJECT_ID")
    if not owner or not repo or not run_url or not project_id:
        raise ConfigurationError(
            "Expected env vars CI_PROJECT_NAMESPACE, CI_PROJECT_NAME, CI_JOB_URL, "
            "and CI_PROJECT_ID to be set."
        )

    host = environ.get("CI_SERVER_URL") or "https://gitlab.com"
    api_url = environ.get("CI_API_V4_URL") or f"{host}/api/v4"
    pr_number = _parse_int(
        environ.get("CI_MERGE_REQUEST_IID") or environ.get("MR_NUMBER")
    )

    return CIContext(
        provider="gitlab",
        host=host,
        owner=owner,
        repo=repo,
        api_url=api_url,
        run_url=run_url,
        ci_name="GitLab CI",
        pr_name="MR",
        pr_number=pr_number,
        default_branch=environ.get("CI_DEFAULT_BRANCH") or None,
        ref_name=environ.get("CI_COMMIT_REF_NAME") or None,
        sha=environ.get("CI_COMMIT_SHA") or None,
        project_id=project_id,
    )


def get_context(environ: Mapping[str, str] | None = None) -> CIContext:
    """Build the CI context for the detected provider."""
    environ = os.environ if environ is None else environ
    if get_provider(environ) == "gitlab":
        context = get_gitlab_context(environ)
    else:
        context = get_github_context(environ)
    logger.debug(f"CI context: {context}")
    return context

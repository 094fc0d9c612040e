"""
Shared setup and error handling for the actions.

``wrap_action`` resolves the API client, project and org, runs the body of
an action, reports the result to the build API and turns any unexpected
error into a failed CI step.
"""

import logging
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sdkci_client import BuildAPIClient
from sdkci_common.api import BuildAPI
from sdkci_common.errors import ConfigurationError

from .config import (
    get_api_key,
    get_max_polling_seconds,
    get_polling_interval,
    get_server_url,
    telemetry_enabled,
)
from .context import CIContext, get_context
from .platform import Platform, get_platform

logger = logging.getLogger(__name__)

PROJECT_LIST_LIMIT = 6


@dataclass
class ActionContext:
    """Everything an action body needs, resolved once per run."""

    api: BuildAPI
    project_name: str
    org_name: str | None
    ci: CIContext
    platform: Platform
    polling_interval_seconds: float
    max_polling_seconds: float
    build_ids: list[str] = field(default_factory=list)

    def add_build_ids(self, build_ids: list[str]) -> None:
        for build_id in build_ids:
            if build_id not in self.build_ids:
                self.build_ids.append(build_id)


async def resolve_project(
    api: BuildAPI, project_input: str | None
) -> tuple[str, str | None]:
    """
    Determine the project to build and its org.

    An explicit project is used as is. Otherwise the API key must have
    access to exactly one project.

    Returns:
        (project name, org name or None)

    Raises:
        ConfigurationError: If there are no projects or more than one
    """
    if project_input:
        return project_input, None

    projects = await api.list_projects(limit=PROJECT_LIST_LIMIT)
    if not projects:
        raise ConfigurationError(
            "No projects found for the given API key. "
            "Please specify the `project` input explicitly."
        )

    if len(projects) == 1:
        project = projects[0]
        logger.info(f"Auto-detected project: {project['slug']}")
        return project["slug"], project.get("org")

    slugs = ", ".join(p["slug"] for p in projects[:5])
    suffix = ", ..." if len(projects) > 5 else ""
    raise ConfigurationError(
        f"Multiple projects found: {slugs}{suffix}. "
        "Please specify the `project` input explicitly."
    )


def serialize_error(error: BaseException) -> dict[str, Any]:
    return {
        "result": "error",
        "error_message": str(error),
        "error_name": type(error).__name__,
        "error_stack": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
    }


async def report_result(
    api: BuildAPI,
    action_type: str,
    result: dict[str, Any],
    *,
    project_name: str | None,
    org_name: str | None,
    build_ids: list[str],
) -> None:
    """Report the outcome of an action, unless telemetry is disabled."""
    if not telemetry_enabled():
        return

    body = {
        "org": org_name,
        "project": project_name,
        "build_ids": build_ids,
        "action_type": action_type,
        **result,
    }
    try:
        await api.report_action_result(body)
    except Exception as e:
        logger.error(f"Error reporting result: {e}")


def make_client(action_type: str, ci: CIContext, api_key: str | None = None) -> BuildAPI:
    return BuildAPIClient(
        get_api_key(api_key),
        get_server_url(),
        platform=ci.platform_header,
        action=action_type,
    )


async def wrap_action(
    action_type: str,
    fn: Callable[[ActionContext], Awaitable[int]],
    *,
    project: str | None = None,
    org: str | None = None,
    api_key: str | None = None,
    ci: CIContext | None = None,
    api: BuildAPI | None = None,
    polling_interval_seconds: float | None = None,
    max_polling_seconds: float | None = None,
) -> int:
    """
    Run the body of an action.

    Args:
        action_type: Name of the action ("build", "preview" or "merge")
        fn: Body of the action; returns the exit code
        project: Project input; auto-detected when omitted
        org: Org input; taken from the project when omitted
        api_key: API key input; read from the environment when omitted
        ci: CI context; read from the environment when omitted
        api: Build API; a BuildAPIClient is created when omitted
        polling_interval_seconds: Delay between build polls
        max_polling_seconds: Polling deadline per build

    Returns:
        Exit code: the action's own on success, 1 on any error
    """
    project_name: str | None = None
    org_name: str | None = org
    action: ActionContext | None = None

    try:
        ci = ci or get_context()
        api = api or make_client(action_type, ci, api_key)

        project_name, project_org = await resolve_project(api, project)
        org_name = org or project_org

        action = ActionContext(
            api=api,
            project_name=project_name,
            org_name=org_name,
            ci=ci,
            platform=get_platform(ci.provider),
            polling_interval_seconds=get_polling_interval(polling_interval_seconds),
            max_polling_seconds=get_max_polling_seconds(max_polling_seconds),
        )

        exit_code = await fn(action)
        await report_result(
            api,
            action_type,
            {"result": "success"},
            project_name=project_name,
            org_name=org_name,
            build_ids=action.build_ids,
        )
        return exit_code

    except Exception as e:
        logger.critical(
            f"Error in action: {e}\n"
            "This is likely a bug; please report it with the log of this run.",
            exc_info=True,
        )
        if api is not None:
            await report_result(
                api,
                action_type,
                serialize_error(e),
                project_name=project_name,
                org_name=org_name,
                build_ids=action.build_ids if action else [],
            )
        return 1

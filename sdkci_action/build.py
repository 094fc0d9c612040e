"""
The build action: build SDKs from the spec and config in the working tree.
"""

import json
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass

from sdkci_combine.combine import load_yaml
from sdkci_common.models import RunResult
from sdkci_engine.orchestrator import run_builds

from .git import read_config
from .outputs import set_outcome_outputs, set_output
from .wrap import ActionContext

logger = logging.getLogger(__name__)

DOCUMENTED_SPEC_FILE_NAME = "openapi.documented.yml"


@dataclass
class BuildParams:
    """Inputs of the build action."""

    branch: str | None = None
    oas_path: str | None = None
    config_path: str | None = None
    commit_message: str | None = None
    guess_config: bool = False
    merge_branch: str | None = None
    base_revision: str | None = None
    base_branch: str | None = None
    output_dir: str | None = None
    documented_spec_output_path: str | None = None


async def collect_results(
    action: ActionContext, results: AsyncIterator[RunResult]
) -> RunResult | None:
    """Drain an orchestrator stream and return its final result."""
    latest: RunResult | None = None
    async for result in results:
        latest = result
        action.add_build_ids(result.build_ids)
        pending = [
            language
            for language, outcome in result.outcomes.items()
            if outcome.commit is None
        ]
        if pending:
            logger.info(f"Waiting for: {', '.join(pending)}")
    return latest


def write_documented_spec(
    documented_spec: str | None, output_dir: str | None, provider: str
) -> str | None:
    """Write the documented spec into the output directory and set its output."""
    if not documented_spec or not output_dir:
        return None
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, DOCUMENTED_SPEC_FILE_NAME)
    with open(path, "w", encoding="utf-8") as f:
        f.write(documented_spec)
    set_output("documented_spec_path", path, provider)
    return path


def write_documented_spec_output(documented_spec: str, output_path: str) -> None:
    """Write the documented spec, converting it to JSON unless the path is YAML."""
    if output_path.endswith((".yml", ".yaml")):
        content = documented_spec
    else:
        content = json.dumps(load_yaml(documented_spec), indent=2)
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(content)


async def run_build(action: ActionContext, params: BuildParams) -> int:
    """
    Run the build action.

    Returns:
        Exit code (always 0; build failures are reported through outputs)
    """
    config = await read_config(params.oas_path, params.config_path, required=True)

    latest = await collect_results(
        action,
        run_builds(
            action.api,
            action.project_name,
            branch=params.branch,
            branch_from=params.base_revision,
            base_branch=params.base_branch,
            merge_branch=params.merge_branch,
            oas_content=config.oas,
            config_content=config.config,
            guess_config=params.guess_config,
            commit_message=params.commit_message,
            allow_empty=False,
            polling_interval_seconds=action.polling_interval_seconds,
            max_polling_seconds=action.max_polling_seconds,
        ),
    )

    if latest is None or latest.no_changes:
        logger.info("No changes to commit, skipping build.")
        return 0

    provider = action.ci.provider
    set_outcome_outputs(latest.outcomes, latest.base_outcomes, provider)
    write_documented_spec(latest.documented_spec, params.output_dir, provider)

    if params.documented_spec_output_path:
        if latest.documented_spec:
            write_documented_spec_output(
                latest.documented_spec, params.documented_spec_output_path
            )
        else:
            logger.warning("No documented spec found.")

    return 0

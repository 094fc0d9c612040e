"""
The merge action: merge a pull request's preview branch into main.
"""

import logging
from dataclasses import dataclass

from sdkci_common.errors import SDKCIError
from sdkci_engine.commit_message import make_commit_message_conventional
from sdkci_engine.orchestrator import run_builds
from sdkci_engine.outcomes import should_fail_run

from .build import collect_results, write_documented_spec
from .git import fetch, is_config_changed, read_config
from .outputs import set_outcome_outputs
from .preview import ai_commit_messages_enabled, resolve_multiple_commit_messages
from .wrap import ActionContext

logger = logging.getLogger(__name__)

# The merge action always merges into the build API's main branch.
MERGE_TARGET_BRANCH = "main"


@dataclass
class MergeParams:
    """Inputs of the merge action."""

    base_sha: str
    base_ref: str
    head_sha: str
    default_branch: str
    merge_branch: str
    default_commit_message: str
    fail_on: str = "error"
    oas_path: str | None = None
    config_path: str | None = None
    multiple_commit_messages: bool | None = None
    commit_messages: dict[str, str] | None = None
    output_dir: str | None = None


async def run_merge(action: ActionContext, params: MergeParams) -> int:
    """
    Run the merge action.

    Merging only happens for pull requests into the default branch whose
    spec or config changed. Per-language ``commit_messages`` (as produced by
    the preview action) are used when multiple commit messages are enabled.

    Returns:
        Exit code: 1 if a language's outcome fails ``fail_on``, else 0
    """
    if params.base_ref != params.default_branch:
        logger.info("Not merging to default branch, skipping merge")
        return 0

    ai_enabled = await ai_commit_messages_enabled(action.api, action.org_name)
    multiple_commit_messages = resolve_multiple_commit_messages(
        params.multiple_commit_messages, ai_enabled
    )

    await fetch(params.base_sha, params.head_sha, depth=1)
    base_config = await read_config(
        params.oas_path, params.config_path, sha=params.base_sha
    )
    head_config = await read_config(
        params.oas_path, params.config_path, sha=params.head_sha
    )
    if not is_config_changed(base_config, head_config):
        logger.info("No config files changed, skipping merge")
        return 0

    commit_message = make_commit_message_conventional(params.default_commit_message)
    target_commit_messages: dict[str, str] | None = (
        dict(params.commit_messages or {}) if multiple_commit_messages else None
    )
    if target_commit_messages is not None:
        logger.info(f"Using commit messages: {target_commit_messages}")
        logger.info(f"With default commit message: {commit_message}")
    else:
        logger.info(f"Using commit message: {commit_message}")

    latest = await collect_results(
        action,
        run_builds(
            action.api,
            action.project_name,
            branch=MERGE_TARGET_BRANCH,
            merge_branch=params.merge_branch,
            commit_message=commit_message,
            target_commit_messages=target_commit_messages or None,
            guess_config=False,
            polling_interval_seconds=action.polling_interval_seconds,
            max_polling_seconds=action.max_polling_seconds,
        ),
    )

    if latest is None:
        raise SDKCIError("No latest run found after build finish")
    if latest.no_changes:
        logger.info("No changes to commit, skipping merge.")
        return 0

    provider = action.ci.provider
    set_outcome_outputs(latest.outcomes, provider=provider, include_base=False)
    write_documented_spec(latest.documented_spec, params.output_dir, provider)

    if not should_fail_run(params.fail_on, latest.outcomes):
        return 1
    return 0

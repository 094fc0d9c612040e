"""
The preview action: build a pull request's changes against its base.

The head build runs on a preview branch reset to the config commit that
corresponds to the pull request's merge base, and is compared with a base
build of the merge base itself.
"""

import logging
from dataclasses import dataclass

from sdkci_common.api import BuildAPI
from sdkci_common.errors import ConfigurationError, SDKCIError
from sdkci_common.models import Outcomes
from sdkci_engine.commit_message import make_commit_message_conventional
from sdkci_engine.orchestrator import CONFIG_FILE_NAME, OAS_FILE_NAME, run_builds
from sdkci_engine.outcomes import should_fail_run

from .build import collect_results, write_documented_spec
from .git import SpecConfig, is_config_changed, merge_base, read_config
from .outputs import set_outcome_outputs, set_output
from .wrap import ActionContext

logger = logging.getLogger(__name__)


@dataclass
class PreviewParams:
    """Inputs of the preview action."""

    branch: str
    base_branch: str
    base_sha: str
    base_ref: str
    head_sha: str
    default_branch: str
    default_commit_message: str
    fail_on: str = "error"
    oas_path: str | None = None
    config_path: str | None = None
    guess_config: bool | None = None
    multiple_commit_messages: bool | None = None
    output_dir: str | None = None


def get_non_main_base_ref(base_ref: str, default_branch: str) -> str | None:
    """Preview branch of the base ref when the PR does not target the default branch."""
    if base_ref == default_branch:
        return None
    non_main_base_ref = f"preview/{base_ref}"
    logger.info(f"Non-main base ref: {non_main_base_ref}")
    return non_main_base_ref


async def ai_commit_messages_enabled(api: BuildAPI, org_name: str | None) -> bool:
    """Check whether the org has AI commit messages enabled."""
    if not org_name:
        return False
    try:
        org = await api.retrieve_org(org_name)
    except Exception as e:
        logger.warning(f"Could not fetch data for {org_name}: {e}")
        return False
    return bool(org.get("enable_ai_commit_messages"))


def resolve_multiple_commit_messages(
    multiple_commit_messages: bool | None, ai_enabled: bool
) -> bool:
    """AI commit messages require per-language commit messages."""
    if not ai_enabled:
        return bool(multiple_commit_messages)
    if multiple_commit_messages is False:
        logger.warning(
            'AI commit messages are enabled, but "multiple_commit_messages" is set '
            "to false. Overriding to true."
        )
    elif multiple_commit_messages is None:
        logger.info(
            'AI commit messages are enabled; setting "multiple_commit_messages" to true.'
        )
    return True


async def _latest_config_commit(
    api: BuildAPI,
    project_name: str,
    *,
    branch: str,
    revision: dict[str, dict[str, str]] | None = None,
) -> str | None:
    builds = await api.list_builds(project_name, branch=branch, revision=revision, limit=1)
    if not builds:
        return None
    return builds[0].get("config_commit")


async def compute_branch_from(
    api: BuildAPI,
    project_name: str,
    merge_base_config: SpecConfig,
    non_main_base_ref: str | None = None,
    oas_path: str | None = None,
    config_path: str | None = None,
) -> str:
    """
    Find the config commit to base the preview branch on.

    In order of preference:
    1. the latest build of the merge base's exact files (by hash) on the
       base ref's preview branch, or main;
    2. the latest build on the base ref's preview branch;
    3. the latest build on main.

    The first lookup is skipped when a configured file is missing at the
    merge base.

    Raises:
        SDKCIError: If no build is found at all
    """
    hashes: dict[str, dict[str, str]] = {}
    if merge_base_config.oas_hash:
        hashes[OAS_FILE_NAME] = {"hash": merge_base_config.oas_hash}
    if merge_base_config.config_hash:
        hashes[CONFIG_FILE_NAME] = {"hash": merge_base_config.config_hash}

    missing_at_merge_base = (oas_path and not merge_base_config.oas_hash) or (
        config_path and not merge_base_config.config_hash
    )
    if not missing_at_merge_base:
        config_commit = await _latest_config_commit(
            api, project_name, branch=non_main_base_ref or "main", revision=hashes
        )
        if config_commit:
            logger.debug(f"Found base via merge base SHA: {config_commit}")
            return config_commit

    if non_main_base_ref:
        config_commit = await _latest_config_commit(
            api, project_name, branch=non_main_base_ref
        )
        if config_commit:
            logger.debug(f"Found base via non-main base ref: {config_commit}")
            return config_commit

    config_commit = await _latest_config_commit(api, project_name, branch="main")
    if not config_commit:
        raise SDKCIError("Could not determine base revision")

    logger.debug(f"Found base via main branch: {config_commit}")
    return config_commit


async def generate_ai_commit_messages(
    api: BuildAPI,
    project_name: str,
    pending: set[str],
    outcomes: Outcomes,
    base_outcomes: Outcomes | None,
    target_commit_messages: dict[str, str],
    fallback: str,
) -> None:
    """
    Generate a commit message for each pending language whose base and head
    commits both exist. Languages are removed from ``pending`` once handled.
    """
    for language in sorted(pending):
        head = outcomes.get(language)
        base = (base_outcomes or {}).get(language)
        head_ref = head.commit.commit if head and head.commit else None
        base_ref = base.commit.commit if base and base.commit else None
        if head_ref is None or base_ref is None:
            continue

        try:
            message = await api.generate_commit_message(
                project_name,
                target=language,
                base_ref=base_ref.sha,
                head_ref=head_ref.sha,
            )
        except Exception as e:
            logger.error(f"Error in AI commit message generation for {language}: {e}")
            message = fallback

        target_commit_messages[language] = message
        pending.discard(language)


async def run_preview(action: ActionContext, params: PreviewParams) -> int:
    """
    Run the preview action.

    Returns:
        Exit code: 1 if a language's outcome fails ``fail_on``, else 0

    Raises:
        ConfigurationError: If not run for a pull request
    """
    if not action.ci.pr_number:
        raise ConfigurationError("This action must be run from a pull request.")

    api = action.api
    ai_enabled = await ai_commit_messages_enabled(api, action.org_name)
    multiple_commit_messages = resolve_multiple_commit_messages(
        params.multiple_commit_messages, ai_enabled
    )

    with action.platform.group("Getting parent revision"):
        merge_base_sha = await merge_base(params.base_sha, params.head_sha)
        non_main_base_ref = get_non_main_base_ref(params.base_ref, params.default_branch)

        merge_base_config = await read_config(
            params.oas_path, params.config_path, sha=merge_base_sha
        )
        head_config = await read_config(
            params.oas_path, params.config_path, sha=params.head_sha, required=True
        )

        if not is_config_changed(merge_base_config, head_config):
            logger.info("No config files changed, skipping preview")
            return 0

        branch_from = await compute_branch_from(
            api,
            action.project_name,
            merge_base_config,
            non_main_base_ref,
            params.oas_path,
            params.config_path,
        )

    commit_message = make_commit_message_conventional(params.default_commit_message)
    target_commit_messages: dict[str, str] | None = (
        {} if multiple_commit_messages else None
    )
    if target_commit_messages is not None:
        logger.info(f"Using commit messages: {target_commit_messages}")
        logger.info(f"With default commit message: {commit_message}")
    else:
        logger.info(f"Using commit message: {commit_message}")

    guess_config = params.guess_config
    if guess_config is None:
        guess_config = not params.config_path and bool(params.oas_path)

    results = run_builds(
        api,
        action.project_name,
        branch=params.branch,
        branch_from=branch_from,
        base_branch=params.base_branch,
        oas_content=head_config.oas,
        config_content=head_config.config,
        base_oas_content=merge_base_config.oas,
        base_config_content=merge_base_config.config,
        guess_config=guess_config,
        commit_message=commit_message,
        target_commit_messages=target_commit_messages or None,
        polling_interval_seconds=action.polling_interval_seconds,
        max_polling_seconds=action.max_polling_seconds,
    )

    if ai_enabled and target_commit_messages is not None:
        latest = None
        pending: set[str] | None = None
        async for result in results:
            latest = result
            action.add_build_ids(result.build_ids)
            if pending is None:
                pending = set(result.outcomes)
            await generate_ai_commit_messages(
                api,
                action.project_name,
                pending,
                result.outcomes,
                result.base_outcomes,
                target_commit_messages,
                commit_message or "",
            )
    else:
        latest = await collect_results(action, results)

    if latest is None:
        raise SDKCIError("No latest run found after build finish")
    if latest.no_changes:
        logger.info("No changes to commit, skipping preview.")
        return 0

    provider = action.ci.provider
    set_outcome_outputs(latest.outcomes, latest.base_outcomes, provider)
    write_documented_spec(latest.documented_spec, params.output_dir, provider)
    if target_commit_messages:
        logger.info(f"Generated commit messages: {target_commit_messages}")
        set_output("commit_messages", target_commit_messages, provider)

    if not should_fail_run(params.fail_on, latest.outcomes, latest.base_outcomes):
        return 1
    return 0

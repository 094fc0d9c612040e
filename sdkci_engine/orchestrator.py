"""
Orchestration of SDK builds.

``run_builds`` decides how a set of spec/config changes is submitted to the
build API and streams the combined outcomes back to the caller:

* single-build mode: one build on ``branch`` (optionally merging another
  branch into it), polled by one poller;
* comparison mode: ``branch`` (and ``base_branch``) are reset to
  ``branch_from`` and a base/head pair of builds is created, polled by two
  concurrent pollers whose updates are merged into one stream.
"""

import asyncio
import hashlib
import logging
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator
from typing import Any, TypeVar

from sdkci_common.api import BuildAPI
from sdkci_common.errors import ConfigurationError
from sdkci_common.models import Build, Outcomes, RunResult

from .commit_message import make_commit_message_conventional
from .poller import MAX_POLLING_SECONDS, POLLING_INTERVAL_SECONDS, poll_build

logger = logging.getLogger(__name__)

T = TypeVar("T")

OAS_FILE_NAME = "openapi.yml"
CONFIG_FILE_NAME = "openapi.stainless.yml"

_EXHAUSTED = object()


def content_hash(content: str) -> str:
    """Short fingerprint of file content for log messages."""
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def revision_files(
    oas_content: str | None, config_content: str | None
) -> dict[str, dict[str, str]]:
    """Build an inline revision from spec and config contents."""
    files: dict[str, dict[str, str]] = {}
    if oas_content:
        files[OAS_FILE_NAME] = {"content": oas_content}
    if config_content:
        files[CONFIG_FILE_NAME] = {"content": config_content}
    return files


async def _next_or_exhausted(iterator: AsyncIterator[T]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _EXHAUSTED


async def combine_async_iterators(
    *sources: AsyncIterable[T],
) -> AsyncGenerator[tuple[int, T], None]:
    """
    Merge several async iterables into one stream of (index, value) pairs.

    One pending ``anext`` is kept per source; whenever any of them finishes
    its value is yielded and only that source is re-armed. Values of a single
    source keep their order; interleaving between sources follows completion
    order. An exception from any source propagates after the other pending
    requests are cancelled.
    """
    iterators = [aiter(source) for source in sources]
    pending: dict[asyncio.Task, int] = {
        asyncio.create_task(_next_or_exhausted(iterator)): index
        for index, iterator in enumerate(iterators)
    }

    try:
        while pending:
            done, _ = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: pending[t]):
                index = pending.pop(task)
                value = task.result()
                if value is _EXHAUSTED:
                    continue
                pending[
                    asyncio.create_task(_next_or_exhausted(iterators[index]))
                ] = index
                yield index, value
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def _validate(
    *,
    branch_from: str | None,
    merge_branch: str | None,
    oas_content: str | None,
    config_content: str | None,
    guess_config: bool,
) -> None:
    if merge_branch and (oas_content or config_content):
        raise ConfigurationError(
            "Cannot specify both merge_branch and oas_path or config_path"
        )
    if guess_config and (config_content or not oas_content):
        raise ConfigurationError(
            "If guess_config is true, must have oas_path and no config_path"
        )
    if branch_from and merge_branch:
        raise ConfigurationError("Cannot specify both base_revision and merge_branch")


async def run_builds(
    api: BuildAPI,
    project_name: str,
    *,
    branch: str | None = None,
    branch_from: str | None = None,
    base_branch: str | None = None,
    merge_branch: str | None = None,
    oas_content: str | None = None,
    config_content: str | None = None,
    base_oas_content: str | None = None,
    base_config_content: str | None = None,
    guess_config: bool = False,
    commit_message: str | None = None,
    target_commit_messages: dict[str, str] | None = None,
    allow_empty: bool = True,
    polling_interval_seconds: float = POLLING_INTERVAL_SECONDS,
    max_polling_seconds: float = MAX_POLLING_SECONDS,
) -> AsyncGenerator[RunResult, None]:
    """
    Create builds for the given changes and stream their outcomes.

    Args:
        api: Build API
        project_name: Project to build
        branch: Branch to build on (the head branch in comparison mode)
        branch_from: Revision to reset branches to; enables comparison mode
        base_branch: Branch for the base build in comparison mode
        merge_branch: Branch to merge into ``branch`` (single-build mode)
        oas_content: OpenAPI spec for the head build
        config_content: Generator config for the head build
        base_oas_content: OpenAPI spec for the base build
        base_config_content: Generator config for the base build
        guess_config: Infer the config from the spec instead of using one
        commit_message: Commit message for generated SDK commits
        target_commit_messages: Per-language commit message overrides
        allow_empty: Create a build even if nothing changed
        polling_interval_seconds: Delay between polls
        max_polling_seconds: Polling deadline per build

    Yields:
        RunResult updates; the last one is final. If the API reports that
        there is nothing to commit, a single result with ``no_changes`` set
        is yielded.

    Raises:
        ConfigurationError: If the options conflict (before any request)
    """
    _validate(
        branch_from=branch_from,
        merge_branch=merge_branch,
        oas_content=oas_content,
        config_content=config_content,
        guess_config=guess_config,
    )
    commit_message = make_commit_message_conventional(commit_message)
    if target_commit_messages:
        target_commit_messages = {
            language: make_commit_message_conventional(message) or message
            for language, message in target_commit_messages.items()
        }

    poll_options = {
        "polling_interval_seconds": polling_interval_seconds,
        "max_polling_seconds": max_polling_seconds,
    }

    if not branch_from:
        creation = await api.create_build(
            project_name,
            revision=f"{branch}..{merge_branch}"
            if merge_branch
            else revision_files(oas_content, config_content),
            branch=branch,
            commit_message=commit_message,
            target_commit_messages=target_commit_messages,
            allow_empty=allow_empty,
        )
        if creation.kind == "no_changes" or creation.build is None:
            logger.info(f"No changes to commit: {creation.message}")
            yield RunResult(outcomes={}, no_changes=True)
            return

        build_ids = [creation.build.id] if creation.build.id else []
        async for result in poll_build(api, creation.build, "head", **poll_options):
            yield RunResult(
                outcomes=result.outcomes,
                base_outcomes=None,
                documented_spec=result.documented_spec,
                build_ids=build_ids,
            )
        return

    if not branch:
        raise ConfigurationError("A branch is required when building against a base")

    config_content = await _resolve_config(
        api,
        project_name,
        branch=branch,
        oas_content=oas_content,
        config_content=config_content,
        guess_config=guess_config,
        label="head",
    )
    if base_branch:
        base_config_content = await _resolve_config(
            api,
            project_name,
            branch=base_branch,
            oas_content=base_oas_content,
            config_content=base_config_content,
            guess_config=guess_config,
            label="base",
        )

    for reset_branch in (branch, base_branch):
        if not reset_branch:
            continue
        branch_info = await api.create_branch(
            project_name, branch=reset_branch, branch_from=branch_from, force=True
        )
        logger.info(
            f"Hard reset {reset_branch} to {branch_from}, config commit "
            f"{(branch_info or {}).get('config_commit')}"
        )

    base_files = revision_files(base_oas_content, base_config_content)
    base_params: dict[str, Any] = {
        "revision": base_files or branch_from,
        "commit_message": commit_message,
    }
    if base_branch:
        base_params["branch"] = base_branch
    head_params: dict[str, Any] = {
        "revision": revision_files(oas_content, config_content),
        "branch": branch,
        "commit_message": commit_message,
    }
    if target_commit_messages:
        head_params["target_commit_messages"] = target_commit_messages

    comparison = await api.compare_builds(project_name, base=base_params, head=head_params)
    if comparison.kind == "no_changes" or comparison.base is None or comparison.head is None:
        logger.info(f"No changes to commit: {comparison.message}")
        yield RunResult(outcomes={}, no_changes=True)
        return

    async for result in _compare(api, comparison.base, comparison.head, poll_options):
        yield result


async def _compare(
    api: BuildAPI, base: Build, head: Build, poll_options: dict[str, float]
) -> AsyncGenerator[RunResult, None]:
    """
    Poll a base/head pair concurrently and merge their updates.

    Head updates are yielded together with the latest base outcomes. Base
    updates alone only refresh the stored base outcomes; if the base changed
    after the last yielded result, one more result is yielded at the end so
    the final result reflects both builds.
    """
    build_ids = [build.id for build in (base, head) if build.id]
    last_base: Outcomes | None = None
    last_head: Outcomes | None = None
    last_documented_spec: str | None = None
    base_changed_since_yield = False

    async for index, value in combine_async_iterators(
        poll_build(api, base, "base", **poll_options),
        poll_build(api, head, "head", **poll_options),
    ):
        if index == 0:
            last_base = value.outcomes
            base_changed_since_yield = True
            continue

        last_head = value.outcomes
        last_documented_spec = value.documented_spec
        base_changed_since_yield = False
        yield RunResult(
            outcomes=last_head,
            base_outcomes=last_base,
            documented_spec=last_documented_spec,
            build_ids=build_ids,
        )

    if last_head is not None and base_changed_since_yield:
        yield RunResult(
            outcomes=last_head,
            base_outcomes=last_base,
            documented_spec=last_documented_spec,
            build_ids=build_ids,
        )


async def _resolve_config(
    api: BuildAPI,
    project_name: str,
    *,
    branch: str,
    oas_content: str | None,
    config_content: str | None,
    guess_config: bool,
    label: str,
) -> str | None:
    """
    Decide which config to submit for a branch before it is reset.

    An explicit config wins. Otherwise the config is guessed from the spec
    when ``guess_config`` is set, or saved from the branch if it already
    exists. A branch that does not exist yet gets no config.
    """
    if config_content:
        return config_content

    if guess_config:
        if not oas_content:
            return None
        logger.info(f"[{label}] Guessing config before branch reset")
        guessed = await api.guess_config(project_name, spec=oas_content, branch=branch)
        if guessed:
            logger.info(f"[{label}] Guessed config (md5 {content_hash(guessed)})")
        return guessed

    if await api.retrieve_branch(project_name, branch) is None:
        logger.info(f"[{label}] Branch {branch} does not exist yet; no config to save")
        return None

    logger.info(f"[{label}] Saving config of {branch} before branch reset")
    saved = await api.retrieve_config(project_name, branch=branch)
    if saved:
        logger.info(f"[{label}] Saved config (md5 {content_hash(saved)})")
    return saved

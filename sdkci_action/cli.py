"""
Command-line entry point for the SDK CI actions.

Every option can also be given through the environment, either as ``NAME``
or as ``INPUT_NAME`` (the form GitHub Actions uses for action inputs), e.g.
``--oas-path`` is read from ``OAS_PATH`` or ``INPUT_OAS_PATH``.

Usage:
    sdkci build --oas-path openapi.yml --config-path openapi.stainless.yml
    sdkci preview --branch preview/my-pr --base-branch preview/base/my-pr ...
    sdkci merge --merge-branch preview/my-pr ...
    sdkci combine --input-files "specs/*.yaml" --output-path combined.yaml
"""

import asyncio
import logging
import sys

import click
import yaml

from sdkci_common.errors import SDKCIError
from sdkci_combine.combine import ServerUrlStrategy, combine_openapi_specs, load_yaml
from sdkci_engine.outcomes import FAIL_RUN_ON

from .build import BuildParams, run_build
from .config import get_log_level, input_envvars
from .context import get_provider
from .logs import configure_logging
from .merge import MergeParams, run_merge
from .outputs import set_output
from .platform import get_platform
from .preview import PreviewParams, run_preview
from .wrap import ActionContext, wrap_action

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def action_input(name: str, **kwargs):
    """A click option that falls back to the NAME / INPUT_NAME env vars."""
    return click.option(
        f"--{name.replace('_', '-')}",
        name,
        envvar=input_envvars(name),
        show_envvar=True,
        **kwargs,
    )


def api_options(fn):
    """Options shared by the commands that talk to the build API."""
    for decorator in reversed(
        [
            action_input("project", default=None, help="Project name (auto-detected if omitted)"),
            action_input("org", default=None, help="Organization name"),
            action_input("stainless_api_key", default=None, help="Build API key"),
            action_input(
                "polling_interval_seconds",
                type=float,
                default=None,
                help="Seconds between build polls (default: 5)",
            ),
            action_input(
                "max_polling_seconds",
                type=float,
                default=None,
                help="Seconds to wait for builds before timing out (default: 600)",
            ),
        ]
    ):
        fn = decorator(fn)
    return fn


def run_action(action_type: str, body, options: dict) -> None:
    """Run an action body through wrap_action and exit with its code."""
    exit_code = run_async(
        wrap_action(
            action_type,
            body,
            project=options["project"],
            org=options["org"],
            api_key=options["stainless_api_key"],
            polling_interval_seconds=options["polling_interval_seconds"],
            max_polling_seconds=options["max_polling_seconds"],
        )
    )
    sys.exit(exit_code)


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="off, error, warn, info or debug (default: LOG_LEVEL env or info)",
)
def cli(log_level: str | None):
    """SDK CI - Build, preview and merge generated SDKs from an OpenAPI spec."""
    configure_logging(get_log_level(log_level), get_platform(get_provider()))


@cli.command("build")
@api_options
@action_input("oas_path", default=None, help="Path to the OpenAPI spec")
@action_input("config_path", default=None, help="Path to the generator config")
@action_input("commit_message", default=None, help="Commit message for the SDK commits")
@action_input("guess_config", type=click.BOOL, default=False, help="Infer the config from the spec")
@action_input("branch", default=None, help="Branch to build on")
@action_input("merge_branch", default=None, help="Branch to merge into --branch")
@action_input("base_revision", default=None, help="Revision to reset the branch to")
@action_input("base_branch", default=None, help="Branch for the base build")
@action_input("output_dir", default=None, help="Directory for the documented spec")
@action_input(
    "documented_spec_output_path",
    default=None,
    help="Also write the documented spec here (JSON unless .yml/.yaml)",
)
def build_command(**options):
    """Build SDKs from the spec and config in the working tree."""
    params = BuildParams(
        branch=options["branch"],
        oas_path=options["oas_path"],
        config_path=options["config_path"],
        commit_message=options["commit_message"],
        guess_config=options["guess_config"],
        merge_branch=options["merge_branch"],
        base_revision=options["base_revision"],
        base_branch=options["base_branch"],
        output_dir=options["output_dir"],
        documented_spec_output_path=options["documented_spec_output_path"],
    )

    async def body(action: ActionContext) -> int:
        return await run_build(action, params)

    run_action("build", body, options)


@cli.command("preview")
@api_options
@action_input("branch", required=True, help="Preview branch for the PR")
@action_input("base_branch", required=True, help="Branch for the base build")
@action_input("base_sha", required=True, help="SHA of the PR's base")
@action_input("base_ref", required=True, help="Ref the PR targets")
@action_input("head_sha", required=True, help="SHA of the PR's head")
@action_input("default_branch", required=True, help="Default branch of the repository")
@action_input("commit_message", required=True, help="Default commit message")
@action_input(
    "fail_on",
    type=click.Choice(FAIL_RUN_ON),
    default="error",
    show_default=True,
    help="Fail the run at this severity",
)
@action_input("oas_path", default=None, help="Path to the OpenAPI spec")
@action_input("config_path", default=None, help="Path to the generator config")
@action_input("guess_config", type=click.BOOL, default=None, help="Infer the config from the spec")
@action_input(
    "multiple_commit_messages",
    type=click.BOOL,
    default=None,
    help="Use a commit message per language",
)
@action_input("output_dir", default=None, help="Directory for the documented spec")
def preview_command(**options):
    """Preview the SDK changes of a pull request."""
    params = PreviewParams(
        branch=options["branch"],
        base_branch=options["base_branch"],
        base_sha=options["base_sha"],
        base_ref=options["base_ref"],
        head_sha=options["head_sha"],
        default_branch=options["default_branch"],
        default_commit_message=options["commit_message"],
        fail_on=options["fail_on"],
        oas_path=options["oas_path"],
        config_path=options["config_path"],
        guess_config=options["guess_config"],
        multiple_commit_messages=options["multiple_commit_messages"],
        output_dir=options["output_dir"],
    )

    async def body(action: ActionContext) -> int:
        return await run_preview(action, params)

    run_action("preview", body, options)


@cli.command("merge")
@api_options
@action_input("base_sha", required=True, help="SHA of the PR's base")
@action_input("base_ref", required=True, help="Ref the PR targets")
@action_input("head_sha", required=True, help="SHA of the PR's head")
@action_input("default_branch", required=True, help="Default branch of the repository")
@action_input("merge_branch", required=True, help="Preview branch to merge into main")
@action_input("commit_message", required=True, help="Default commit message")
@action_input(
    "fail_on",
    type=click.Choice(FAIL_RUN_ON),
    default="error",
    show_default=True,
    help="Fail the run at this severity",
)
@action_input("oas_path", default=None, help="Path to the OpenAPI spec")
@action_input("config_path", default=None, help="Path to the generator config")
@action_input(
    "multiple_commit_messages",
    type=click.BOOL,
    default=None,
    help="Use a commit message per language",
)
@action_input(
    "commit_messages",
    default=None,
    help="Per-language commit messages, e.g. the preview action's commit_messages output",
)
@action_input("output_dir", default=None, help="Directory for the documented spec")
def merge_command(**options):
    """Merge a pull request's SDK changes into main."""
    params = MergeParams(
        base_sha=options["base_sha"],
        base_ref=options["base_ref"],
        head_sha=options["head_sha"],
        default_branch=options["default_branch"],
        merge_branch=options["merge_branch"],
        default_commit_message=options["commit_message"],
        fail_on=options["fail_on"],
        oas_path=options["oas_path"],
        config_path=options["config_path"],
        multiple_commit_messages=options["multiple_commit_messages"],
        commit_messages=parse_commit_messages(options["commit_messages"]),
        output_dir=options["output_dir"],
    )

    async def body(action: ActionContext) -> int:
        return await run_merge(action, params)

    run_action("merge", body, options)


def parse_commit_messages(raw: str | None) -> dict[str, str] | None:
    """Parse per-language commit messages (a YAML or JSON mapping)."""
    if not raw:
        return None
    try:
        data = load_yaml(raw)
    except yaml.YAMLError as e:
        raise click.BadParameter(f"Failed to parse commit_messages: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter("commit_messages must be a mapping of language to message")
    return {str(language): str(message) for language, message in data.items()}


def parse_server_strategy(raw: str | None) -> ServerUrlStrategy | None:
    """Parse the server URL strategy input (YAML or JSON)."""
    if not raw:
        return None
    try:
        data = load_yaml(raw)
    except yaml.YAMLError as e:
        raise click.BadParameter(f"Failed to parse server_url_strategy YAML: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter("server_url_strategy must be a mapping")
    return ServerUrlStrategy.from_dict(data)


@cli.command("combine")
@action_input("input_files", required=True, help="Comma-separated glob patterns")
@action_input(
    "output_path",
    default="./combined-openapi.yaml",
    show_default=True,
    help="Output file (.json for JSON, YAML otherwise)",
)
@action_input("server_url_strategy", default=None, help="YAML: {global: url, preserve: [urls]}")
@action_input(
    "prefix_with_info",
    type=click.BOOL,
    default=False,
    help="Prefix components and tags with each spec's title",
)
def combine_command(
    input_files: str,
    output_path: str,
    server_url_strategy: str | None,
    prefix_with_info: bool,
):
    """Combine several OpenAPI specs into one file."""
    provider = get_provider()
    server_strategy = parse_server_strategy(server_url_strategy)

    logger.info(f"Input patterns: {input_files}")
    logger.info(f"Output path: {output_path}")

    try:
        result = combine_openapi_specs(
            input_files, output_path, server_strategy, prefix_with_info
        )
    except (SDKCIError, OSError, ValueError) as e:
        logger.error(f"Error combining specs: {e}")
        sys.exit(1)

    logger.info(f"Total paths before combine: {result.path_count_before}")
    logger.info(f"Total paths after combine: {result.path_count_after}")

    set_output("combined_file", output_path, provider)
    set_output("path_count", str(result.path_count_after), provider)
    logger.info(f"Combine completed successfully, output file: {output_path}")


if __name__ == "__main__":
    cli()

"""
Git operations used by the preview and merge actions.

Commands run through asyncio subprocesses in the current working directory,
which is expected to be a checkout of the repository being built.
"""

import asyncio
import hashlib
import logging
import os
from dataclasses import dataclass

from sdkci_common.errors import ConfigurationError, SDKCIError

logger = logging.getLogger(__name__)

MERGE_BASE_ATTEMPTS = 10
DEEPEN_BY = 10


class GitError(SDKCIError, RuntimeError):
    """A git command failed."""


@dataclass
class SpecConfig:
    """The OpenAPI spec and generator config at one revision."""

    oas: str | None = None
    config: str | None = None
    oas_hash: str | None = None
    config_hash: str | None = None


def md5_hash(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


async def run_git(*args: str, check: bool = True) -> str:
    """
    Run a git command and return its stdout.

    Raises:
        GitError: If the command exits non-zero and ``check`` is set
    """
    process = await asyncio.create_subprocess_exec(
        "git",
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()

    if process.returncode != 0 and check:
        raise GitError(f"git {' '.join(args)} failed: {stderr.decode().strip()}")
    return stdout.decode()


async def fetch(*refs: str, depth: int | None = None, deepen: int | None = None) -> bool:
    """Fetch refs from origin; returns False if the fetch failed."""
    args = ["fetch", "--quiet"]
    if depth is not None:
        args.append(f"--depth={depth}")
    if deepen is not None:
        args.append(f"--deepen={deepen}")
    try:
        await run_git(*args, "origin", *refs)
    except GitError as e:
        logger.debug(f"Fetch of {', '.join(refs)} failed: {e}")
        return False
    return True


async def merge_base(base_sha: str, head_sha: str) -> str:
    """
    Find the merge base of two commits, deepening a shallow clone as needed.

    Raises:
        GitError: If no merge base is found after several deepening attempts
    """
    await fetch(base_sha, depth=1)

    for _ in range(MERGE_BASE_ATTEMPTS):
        try:
            sha = (await run_git("merge-base", head_sha, base_sha)).strip()
        except GitError:
            sha = ""
        if sha:
            logger.info(f"Merge base: {sha}")
            return sha
        await fetch(base_sha, head_sha, deepen=DEEPEN_BY)

    raise GitError("Could not determine merge base SHA")


async def show_file(sha: str, path: str) -> str | None:
    """Return the contents of a file at a commit, or None if it is missing."""
    try:
        return await run_git("show", f"{sha}:{path}")
    except GitError:
        return None


def _read_working_tree(path: str) -> str | None:
    if not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as f:
        return f.read()


async def read_config(
    oas_path: str | None = None,
    config_path: str | None = None,
    sha: str | None = None,
    required: bool = False,
) -> SpecConfig:
    """
    Read the spec and config, either from the working tree or at a commit.

    Args:
        oas_path: Path of the OpenAPI spec, if any
        config_path: Path of the generator config, if any
        sha: Commit to read from; the working tree when omitted
        required: Raise if a given path cannot be read

    Raises:
        ConfigurationError: If ``required`` and a given file is missing
    """
    where = sha or "the working tree"
    result = SpecConfig()

    for path, attribute in ((oas_path, "oas"), (config_path, "config")):
        if not path:
            continue
        if sha:
            content = await show_file(sha, path)
        else:
            content = _read_working_tree(path)

        if content is None:
            if required:
                raise ConfigurationError(f"Could not read {path} at {where}")
            logger.info(f"File {path} does not exist at {where}")
            continue

        setattr(result, attribute, content)
        setattr(result, f"{attribute}_hash", md5_hash(content))

    return result


def is_config_changed(before: SpecConfig, after: SpecConfig) -> bool:
    """Return True if the spec or the config differs between two revisions."""
    changed = False
    if before.oas_hash != after.oas_hash:
        logger.info("OAS file changed")
        changed = True
    if before.config_hash != after.config_hash:
        logger.info("Config file changed")
        changed = True
    return changed

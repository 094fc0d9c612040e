"""
Abstract interface for the SDK build API.

This module defines the contract the build engine relies on, allowing the
HTTP client to be swapped for a fake in tests or for another transport.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from .models import Build, BuildComparison, BuildCreation, Diagnostic

# Revision of a build: either a branch expression such as "main..feature"
# or a mapping of file names to {"content": ...}.
Revision = str | dict[str, dict[str, str]]


class BuildAPI(ABC):
    """
    Abstract base class for build API operations.

    Implementations must be safe to call from concurrent asyncio tasks; the
    engine may have two pollers talking to the API at the same time.
    """

    @abstractmethod
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
        """
        Create a build for a single branch.

        Args:
            project: Project name
            revision: Branch expression or inline file contents
            branch: Branch to build on
            commit_message: Commit message for the generated SDK commits
            target_commit_messages: Per-language commit message overrides
            allow_empty: Whether to create a commit even if nothing changed

        Returns:
            A "created" result with the build, or a "no_changes" result
        """
        pass

    @abstractmethod
    async def compare_builds(
        self,
        project: str,
        *,
        base: dict[str, Any],
        head: dict[str, Any],
    ) -> BuildComparison:
        """
        Create a base and a head build to compare against each other.

        Args:
            project: Project name
            base: Build parameters (revision, branch, commit_message) for base
            head: Build parameters for head

        Returns:
            A "created" result with both builds, or a "no_changes" result
        """
        pass

    @abstractmethod
    async def retrieve_build(self, build_id: str) -> Build:
        """
        Retrieve the current state of a build.

        Raises:
            BuildAPIError: If the request fails
        """
        pass

    @abstractmethod
    def list_diagnostics(self, build_id: str) -> AsyncIterator[Diagnostic]:
        """Iterate over all diagnostics of a build, following pagination."""
        pass

    @abstractmethod
    async def unwrap_file(self, file: dict[str, Any]) -> str:
        """Resolve a file reference (inline content or URL) to its content."""
        pass

    @abstractmethod
    async def guess_config(
        self, project: str, *, spec: str, branch: str | None = None
    ) -> str | None:
        """Infer a generator config from an OpenAPI spec."""
        pass

    @abstractmethod
    async def retrieve_config(self, project: str, *, branch: str) -> str | None:
        """Return the generator config currently stored on a branch."""
        pass

    @abstractmethod
    async def create_branch(
        self, project: str, *, branch: str, branch_from: str, force: bool = False
    ) -> dict[str, Any]:
        """
        Create a branch, or reset an existing one when ``force`` is set.

        Returns:
            Branch information including ``config_commit``
        """
        pass

    @abstractmethod
    async def retrieve_branch(self, project: str, branch: str) -> dict[str, Any] | None:
        """Return branch information, or None if the branch does not exist."""
        pass

    @abstractmethod
    async def list_builds(
        self,
        project: str,
        *,
        branch: str | None = None,
        revision: dict[str, dict[str, str]] | None = None,
        limit: int = 1,
    ) -> list[dict[str, Any]]:
        """List recent builds (most recent first) as raw dictionaries."""
        pass

    @abstractmethod
    async def generate_commit_message(
        self, project: str, *, target: str, base_ref: str, head_ref: str
    ) -> str:
        """Generate a commit message describing the SDK diff for one target."""
        pass

    @abstractmethod
    async def list_projects(self, limit: int = 6) -> list[dict[str, Any]]:
        """List projects visible to the API key."""
        pass

    @abstractmethod
    async def retrieve_org(self, org: str) -> dict[str, Any]:
        """Return organization settings."""
        pass

    @abstractmethod
    async def report_action_result(self, body: dict[str, Any]) -> None:
        """Report the result of an action run."""
        pass

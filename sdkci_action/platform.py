"""
Platform-specific log output for GitHub Actions and GitLab CI.

Both platforms support collapsible log groups; only GitHub Actions supports
error annotations.
"""

import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

BOLD = "\x1b[1m"
RESET = "\x1b[0m"


class Platform(ABC):
    """Log group and annotation commands of a CI platform."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def emit_error_annotation(self, message: str) -> None:
        """Surface an error in the platform UI, where supported."""

    @abstractmethod
    def start_group(self, name: str) -> str:
        """Start a collapsible log group and return its id."""
        pass

    @abstractmethod
    def end_group(self, group_id: str) -> None:
        """End the log group with the given id."""
        pass

    @contextmanager
    def group(self, name: str) -> Iterator[None]:
        group_id = self.start_group(name)
        try:
            yield
        finally:
            self.end_group(group_id)


class GitHubPlatform(Platform):
    def emit_error_annotation(self, message: str) -> None:
        # Workflow commands are line based.
        escaped = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
        self.write(f"::error::{escaped}\n")

    def start_group(self, name: str) -> str:
        self.write(f"::group::{name}\n")
        return ""

    def end_group(self, group_id: str) -> None:
        self.write("::endgroup::\n")


class GitLabPlatform(Platform):
    def __init__(self, stream: TextIO | None = None):
        super().__init__(stream)
        self._section_counter = 0

    def start_group(self, name: str) -> str:
        self._section_counter += 1
        section_id = f"section_{self._section_counter}"
        self.write(
            f"\x1b[0Ksection_start:{int(time.time())}:{section_id}\r\x1b[0K"
            f"{BOLD}{name}{RESET}\n"
        )
        return section_id

    def end_group(self, group_id: str) -> None:
        self.write(f"\x1b[0Ksection_end:{int(time.time())}:{group_id}\r\x1b[0K")


def get_platform(provider: str, stream: TextIO | None = None) -> Platform:
    """Return the platform for a provider name ("github" or "gitlab")."""
    if provider == "gitlab":
        return GitLabPlatform(stream)
    return GitHubPlatform(stream)

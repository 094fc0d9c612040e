"""Conventional Commits handling for generated SDK commit messages."""

import logging
import re

logger = logging.getLogger(__name__)

# https://www.conventionalcommits.org/en/v1.0.0/
CONVENTIONAL_COMMIT_REGEX = re.compile(
    r"^(build|chore|ci|docs|feat|fix|perf|refactor|revert|style|test)(\(.*\))?(!?): .*$"
)


def is_conventional_commit_message(message: str) -> bool:
    return CONVENTIONAL_COMMIT_REGEX.match(message) is not None


def make_commit_message_conventional(message: str | None) -> str | None:
    """
    Prefix a commit message with "feat: " if it is not conventional.

    Args:
        message: Commit message, or None

    Returns:
        The message unchanged if it is empty or already conventional,
        otherwise the message prefixed with "feat: "
    """
    if message and not is_conventional_commit_message(message):
        logger.warning(
            f'Commit message: "{message}" is not in Conventional Commits format: '
            "https://www.conventionalcommits.org/en/v1.0.0/. "
            'Prepending "feat" and using anyway.'
        )
        return f"feat: {message}"
    return message

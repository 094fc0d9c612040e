"""Step outputs for GitHub Actions (GitLab CI has no equivalent)."""

import json
import logging
import os
import sys
import uuid
from typing import Any, TextIO

from sdkci_common.models import Outcomes, outcomes_to_dict

logger = logging.getLogger(__name__)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def set_output(
    name: str, value: Any, provider: str = "github", stream: TextIO | None = None
) -> None:
    """
    Set a step output.

    Values that are not strings are JSON-encoded; None becomes an empty
    string. Outputs are appended to the GITHUB_OUTPUT file using a random
    heredoc delimiter, or printed as a ``::set-output`` command when the
    file is not available.
    """
    if provider == "gitlab":
        return

    text = _stringify(value)
    file_path = os.environ.get("GITHUB_OUTPUT")
    if file_path and os.path.exists(file_path):
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        with open(file_path, "a", encoding="utf-8") as f:
            f.write(f"{name}<<{delimiter}\n{text}\n{delimiter}\n")
    else:
        (stream or sys.stdout).write(f"\n::set-output name={name}::{text}\n")
    logger.debug(f"Set output {name}")


def set_outcome_outputs(
    outcomes: Outcomes,
    base_outcomes: Outcomes | None = None,
    provider: str = "github",
    include_base: bool = True,
) -> None:
    """Set the ``outcomes`` (and ``base_outcomes``) outputs."""
    set_output("outcomes", outcomes_to_dict(outcomes), provider)
    if include_base:
        set_output("base_outcomes", outcomes_to_dict(base_outcomes), provider)

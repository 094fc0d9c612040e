"""
SDK CI engine module.

This module contains the build reconciliation engine: the outcome
classifier, the build poller and the orchestrator that creates builds and
merges the pollers' updates into one stream of run results.

The engine only talks to the build API through the BuildAPI interface from
sdkci_common, so it can be driven by any implementation of it.
"""

from .orchestrator import combine_async_iterators, run_builds
from .outcomes import Category, categorize_outcome, should_fail_run
from .poller import BuildPoller, PollResult, poll_build

__all__ = [
    "BuildPoller",
    "Category",
    "PollResult",
    "categorize_outcome",
    "combine_async_iterators",
    "poll_build",
    "run_builds",
    "should_fail_run",
]

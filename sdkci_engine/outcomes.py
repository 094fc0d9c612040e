"""
Classification of per-language build outcomes.

This module turns a language's reconciled build state (and, optionally, the
state of the same language in a baseline build) into a single severity
category. The categories decide whether a CI run fails and whether a build
is a regression from its base.

Classification rules are applied in a fixed priority order and the first
matching rule wins:

    1. no completed commit yet                       -> pending
    2. noop / cancelled commit                       -> success
    3. fatal commit                                  -> fatal
    4. timed out commit                              -> fatal
    5. unknown commit conclusion                     -> fatal
    6. new fatal diagnostics                         -> fatal
    7. new error diagnostics                         -> error
    8. build check newly failing                     -> error
    9. net-new "error" commit conclusion             -> error
   10. new warning diagnostics                       -> warning
   11. lint or test check newly failing              -> warning
   12. net-new "warning" commit conclusion           -> warning
   13. net-new "merge_conflict" commit conclusion    -> warning (merge conflict)
   14. new note diagnostics / net-new "note"         -> note
   15. otherwise                                     -> success
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from sdkci_common.errors import ConfigurationError
from sdkci_common.models import (
    CHECK_TYPES,
    DIAGNOSTIC_LEVELS,
    BuildTarget,
    CheckStep,
    Diagnostic,
    Outcomes,
)

logger = logging.getLogger(__name__)

# Thresholds accepted by should_fail_run, most severe first.
FAIL_RUN_ON: tuple[str, ...] = ("never", "fatal", "error", "warning", "note")

# Severity scale used for pass/fail decisions. Order matters: a conclusion
# fails the run when its index is <= the index of the threshold.
OUTCOME_SEVERITY: tuple[str, ...] = (*FAIL_RUN_ON, "success")

KNOWN_CONCLUSIONS: tuple[str, ...] = (
    "merge_conflict",
    "error",
    "warning",
    "note",
    "success",
)

# Commits with these conclusions did not produce a build to judge.
NON_BUILD_CONCLUSIONS: tuple[str, ...] = ("noop", "cancelled")

# If a check has not started this long after the commit completed, assume it
# was skipped so it does not keep the outcome pending forever.
ASSUME_PENDING_CHECKS_SKIPPED_AFTER_SECS = 60


@dataclass
class Category:
    """
    Classification of one language's outcome.

    ``conclusion`` is one of fatal, error, warning, note or success, or None
    while the commit is still pending. ``is_regression`` is None when no
    baseline was supplied.
    """

    conclusion: str | None
    reason: str
    is_pending: bool = False
    is_merge_conflict: bool = False
    is_regression: bool | None = None


def get_reason(description: str, is_regression: bool | None) -> str:
    """Build the human-readable sentence explaining a category."""
    if is_regression is True:
        suffix = ", which is a regression from the base state"
    elif is_regression is False:
        suffix = ", but this did not represent a regression"
    else:
        suffix = ""
    return f"Your SDK build {description}{suffix}."


def count_diagnostic_levels(diagnostics: Iterable[Diagnostic]) -> dict[str, int]:
    """Count diagnostics per level; every level is present in the result."""
    counts = {level: 0 for level in DIAGNOSTIC_LEVELS}
    for diagnostic in diagnostics:
        counts[diagnostic.level] = counts.get(diagnostic.level, 0) + 1
    return counts


def get_new_diagnostics(
    diagnostics: list[Diagnostic],
    base_diagnostics: list[Diagnostic] | None = None,
) -> list[Diagnostic]:
    """
    Return the diagnostics that are not present in the baseline.

    Diagnostics are matched on (code, message, config_ref, oas_ref). Without
    a baseline every diagnostic is new.
    """
    if base_diagnostics is None:
        return list(diagnostics)
    known = {d.identity for d in base_diagnostics}
    return [d for d in diagnostics if d.identity not in known]


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    """Return diagnostics ordered from most to least severe (stable)."""

    def rank(diagnostic: Diagnostic) -> int:
        if diagnostic.level in DIAGNOSTIC_LEVELS:
            return DIAGNOSTIC_LEVELS.index(diagnostic.level)
        return len(DIAGNOSTIC_LEVELS)

    return sorted(diagnostics, key=rank)


def get_checks(
    outcome: BuildTarget, now: datetime | None = None
) -> dict[str, CheckStep | None]:
    """
    Return the build, lint and test checks of an outcome.

    A check that is still not started well after the commit completed is
    reported as completed with a "skipped" conclusion. The outcome itself is
    left untouched.
    """
    commit = outcome.commit
    stale = False
    if commit is not None and commit.completed_at is not None:
        now = now or datetime.now(UTC)
        elapsed = (now - commit.completed_at).total_seconds()
        stale = elapsed > ASSUME_PENDING_CHECKS_SKIPPED_AFTER_SECS

    checks: dict[str, CheckStep | None] = {}
    for check_type in CHECK_TYPES:
        check = outcome.check(check_type)
        if check is not None and check.status == "not_started" and stale:
            check = CheckStep(status="completed", conclusion="skipped")
        checks[check_type] = check
    return checks


def get_new_checks(
    head_checks: dict[str, CheckStep | None],
    base_checks: dict[str, CheckStep | None] | None = None,
) -> dict[str, CheckStep]:
    """Return the head checks whose conclusion differs from the baseline."""
    result: dict[str, CheckStep] = {}
    for check_type in CHECK_TYPES:
        head_check = head_checks.get(check_type)
        if head_check is None:
            continue
        base_check = (base_checks or {}).get(check_type)
        base_conclusion = (
            base_check.conclusion if base_check and base_check.is_completed else None
        )
        conclusion = head_check.conclusion if head_check.is_completed else None
        if not base_conclusion or base_conclusion != conclusion:
            result[check_type] = head_check
    return result


def categorize_outcome(
    outcome: BuildTarget,
    base_outcome: BuildTarget | None = None,
    *,
    now: datetime | None = None,
) -> Category:
    """
    Classify one language's outcome, optionally against a baseline.

    Args:
        outcome: Reconciled outcome of the language in the head build
        base_outcome: Outcome of the same language in the base build, if any
        now: Current time, used to detect checks that never started

    Returns:
        The category of the first matching rule (see module docstring)
    """
    commit = outcome.commit
    if commit is None or not commit.is_completed:
        return Category(
            conclusion=None,
            reason=get_reason("is still in progress", None),
            is_pending=True,
        )

    has_base = base_outcome is not None
    base_commit = base_outcome.commit if base_outcome is not None else None
    base_conclusion = (
        base_commit.conclusion if base_commit and base_commit.is_completed else None
    )
    conclusion = commit.conclusion
    net_new = conclusion != base_conclusion

    def categorized(
        severity: str,
        description: str,
        is_regression: bool | None,
        is_merge_conflict: bool = False,
        is_pending: bool = False,
    ) -> Category:
        if not has_base:
            is_regression = None
        return Category(
            conclusion=severity,
            reason=get_reason(description, is_regression),
            is_pending=is_pending,
            is_merge_conflict=is_merge_conflict,
            is_regression=is_regression,
        )

    if conclusion in NON_BUILD_CONCLUSIONS:
        return categorized("success", f"had a conclusion of {conclusion}", False)

    if conclusion == "fatal":
        return categorized(
            "fatal",
            'had a "fatal" conclusion, and no code was generated',
            base_conclusion != "fatal",
        )

    if conclusion == "timed_out":
        return categorized(
            "fatal",
            "timed out before it completed, and no code was generated",
            base_conclusion != "timed_out",
        )

    if conclusion not in KNOWN_CONCLUSIONS:
        return categorized(
            "fatal",
            f'had an unknown "{conclusion}" conclusion',
            net_new,
        )

    new_diagnostics = sort_diagnostics(
        get_new_diagnostics(
            outcome.diagnostics,
            base_outcome.diagnostics if base_outcome is not None else None,
        )
    )
    new_levels = {d.level for d in new_diagnostics}
    new = "new " if has_base else ""

    head_checks = get_checks(outcome, now)
    base_checks = get_checks(base_outcome, now) if base_outcome is not None else {}
    failing_checks = {
        check_type
        for check_type, check in get_new_checks(head_checks, base_checks).items()
        if check.is_failing
    }

    if "fatal" in new_levels:
        return categorized("fatal", f"had at least one {new}fatal diagnostic", True)

    if "error" in new_levels:
        return categorized("error", f"had at least one {new}error diagnostic", True)

    if "build" in failing_checks:
        return categorized("error", "had a failure in the build CI job", True)

    if net_new and conclusion == "error":
        return categorized("error", 'had at least one "error" diagnostic', True)

    if "warning" in new_levels:
        return categorized(
            "warning", f"had at least one {new}warning diagnostic", True
        )

    for check_type in ("lint", "test"):
        if check_type in failing_checks:
            return categorized(
                "warning", f"had a failure in the {check_type} CI job", True
            )

    if net_new and conclusion == "warning":
        return categorized("warning", 'had at least one "warning" diagnostic', True)

    if net_new and conclusion == "merge_conflict":
        return categorized(
            "warning",
            "resulted in a merge conflict between your custom code and the "
            "newly generated changes",
            True,
            is_merge_conflict=True,
        )

    if "note" in new_levels:
        return categorized("note", f"had at least one {new}note diagnostic", True)

    if net_new and conclusion == "note":
        return categorized("note", 'had at least one "note" diagnostic', True)

    is_pending = any(
        check is not None and not check.is_completed for check in head_checks.values()
    )
    if conclusion == "success":
        description = "was successful"
    elif conclusion == "merge_conflict":
        description = "resulted in the same merge conflict as the base build"
    else:
        description = f"had a conclusion of {conclusion}"
    return categorized(
        "success",
        description,
        False,
        is_merge_conflict=conclusion == "merge_conflict",
        is_pending=is_pending,
    )


def should_fail_run(
    fail_run_on: str,
    outcomes: Outcomes,
    base_outcomes: Outcomes | None = None,
) -> bool:
    """
    Check every language's outcome against the failure threshold.

    A language fails when its category is at least as severe as
    ``fail_run_on`` ("never" never fails). Every failing language is logged
    along with the reason.

    Args:
        fail_run_on: One of "never", "fatal", "error", "warning", "note"
        outcomes: Final head outcomes
        base_outcomes: Final base outcomes, when comparing against a base

    Returns:
        False if at least one language failed (the run should fail),
        True if the run passes

    Raises:
        ConfigurationError: If fail_run_on is not a known threshold
    """
    if fail_run_on not in FAIL_RUN_ON:
        raise ConfigurationError(
            f"Invalid fail_run_on value {fail_run_on!r}, "
            f"expected one of: {', '.join(FAIL_RUN_ON)}"
        )

    threshold = OUTCOME_SEVERITY.index(fail_run_on)
    failures: list[tuple[str, str]] = []

    for language, outcome in outcomes.items():
        base_outcome = base_outcomes.get(language) if base_outcomes else None
        category = categorize_outcome(outcome, base_outcome)
        if category.conclusion is None:
            continue
        if OUTCOME_SEVERITY.index(category.conclusion) <= threshold:
            failures.append((language, category.reason))

    if failures:
        logger.warning("The following languages did not build successfully:")
        for language, reason in failures:
            logger.warning(f"  {language}: {reason}")
        return False

    return True

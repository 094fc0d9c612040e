"""
Polling of a single build until every language has a result.

The poller keeps a local copy of each language's outcome and reconciles it
with the server's view on every poll. The commit result and the diagnostics
of a language are owned locally: they are adopted exactly once, when the
server first reports the commit as completed, and never changed afterwards.
"""

import asyncio
import copy
import logging
import time
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, replace
from typing import Literal

from sdkci_common.api import BuildAPI
from sdkci_common.models import (
    CHECK_TYPES,
    Build,
    BuildTarget,
    CommitResult,
    Diagnostic,
    Outcomes,
)

logger = logging.getLogger(__name__)

POLLING_INTERVAL_SECONDS = 5.0
MAX_POLLING_SECONDS = 10 * 60.0


@dataclass
class PollResult:
    """A snapshot of a build's outcomes."""

    outcomes: Outcomes
    documented_spec: str | None = None


@dataclass
class PollStep:
    """Result of BuildPoller.next_state: a fresh snapshot, or the end."""

    kind: Literal["value", "done"]
    value: PollResult | None = None


class BuildPoller:
    """
    State machine that drives one build to completion.

    Each call to ``next_state()`` either returns a new snapshot (only when
    something observable changed) or signals that polling has finished.
    Polling ends when every language's target is completed or when
    ``max_polling_seconds`` have elapsed; languages still without a completed
    commit then receive a synthetic "timed_out" commit.

    The deadline is checked between polls only, so a slow request can
    overrun it. Requests for one build never overlap.
    """

    def __init__(
        self,
        api: BuildAPI,
        build: Build,
        label: str,
        polling_interval_seconds: float = POLLING_INTERVAL_SECONDS,
        max_polling_seconds: float = MAX_POLLING_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the poller.

        Args:
            api: Build API used to retrieve the build and its diagnostics
            build: The build as returned when it was created
            label: Role of the build in log messages ("base" or "head")
            polling_interval_seconds: Delay between polls
            max_polling_seconds: Wall-clock limit before stragglers time out
            clock: Monotonic clock, replaceable in tests
        """
        self.api = api
        self.build_id = build.id
        self.label = label
        self.polling_interval_seconds = polling_interval_seconds
        self.max_polling_seconds = max_polling_seconds
        self._clock = clock

        self.languages = list(build.targets)
        self.outcomes: Outcomes = {
            language: replace(target, commit=None, diagnostics=[])
            for language, target in build.targets.items()
        }
        self.documented_spec: str | None = None

        self._state: Literal["initial", "polling", "done"] = "initial"
        self._polling_start = 0.0
        self._polls = 0

    def __aiter__(self) -> AsyncGenerator[PollResult, None]:
        return self._iterate()

    async def _iterate(self) -> AsyncGenerator[PollResult, None]:
        while True:
            step = await self.next_state()
            if step.kind == "done" or step.value is None:
                return
            yield step.value

    def snapshot(self) -> PollResult:
        """Return a deep copy of the current state."""
        return PollResult(
            outcomes=copy.deepcopy(self.outcomes),
            documented_spec=self.documented_spec,
        )

    async def next_state(self) -> PollStep:
        """
        Advance the poller until there is something new to report.

        Returns:
            A "value" step with a fresh snapshot, or a "done" step once the
            final snapshot has been returned
        """
        if self._state == "done":
            return PollStep(kind="done")

        if self._state == "initial":
            if not self.build_id:
                logger.info("No new build was created; exiting.")
                self._state = "done"
                return PollStep(kind="value", value=self.snapshot())

            logger.info(
                f"[{self.label}] Created build {self.build_id} for languages: "
                f"{', '.join(self.languages)}"
            )
            self._polling_start = self._clock()
            self._state = "polling"

        while not self._all_completed() and not self._deadline_passed():
            if self._polls > 0:
                await asyncio.sleep(self.polling_interval_seconds)

            build = await self.api.retrieve_build(self.build_id)
            has_change = await self.merge(build)
            self._polls += 1

            if has_change:
                return PollStep(kind="value", value=self.snapshot())

        self._state = "done"
        finalized = self._finalize_timed_out()
        if finalized or self._polls == 0:
            return PollStep(kind="value", value=self.snapshot())
        return PollStep(kind="done")

    async def merge(self, build: Build) -> bool:
        """
        Reconcile local outcomes with a freshly retrieved build.

        Server fields replace local ones, except for the commit and diagnostics,
        which are only set locally. When a language's
        commit completes for the first time, the commit is adopted and the
        build's diagnostics are fetched once.

        Args:
            build: Current server state of the build

        Returns:
            True if anything observable changed
        """
        has_change = False

        for language in self.languages:
            existing = self.outcomes[language]
            server = build.targets.get(language)
            if server is None:
                continue

            merged = replace(
                server,
                commit=existing.commit,
                diagnostics=existing.diagnostics,
            )

            if existing.status != "completed":
                logger.info(
                    f"[{self.label}] Build for {language} has status {server.status}"
                )

            if existing.status != server.status:
                has_change = True

            for check_type in CHECK_TYPES:
                before = existing.check(check_type)
                after = server.check(check_type)
                if (before and before.status) != (after and after.status):
                    has_change = True

            commit_completed = server.commit is not None and server.commit.is_completed
            if existing.commit is None and commit_completed:
                logger.info(
                    f"[{self.label}] Build for {language} finished with conclusion "
                    f"{server.commit.conclusion}"
                )
                merged.commit = server.commit
                merged.diagnostics = await self._fetch_diagnostics(language)
                has_change = True

            self.outcomes[language] = merged

        if self.documented_spec is None and build.documented_spec:
            self.documented_spec = await self.api.unwrap_file(build.documented_spec)
            has_change = True

        return has_change

    async def _fetch_diagnostics(self, language: str) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        try:
            async for diagnostic in self.api.list_diagnostics(self.build_id):
                diagnostics.append(diagnostic)
        except Exception as e:
            logger.warning(
                f"[{self.label}] Error getting diagnostics for {language}, "
                f"continuing anyway: {e}"
            )
            return []
        return diagnostics

    def _all_completed(self) -> bool:
        return all(
            outcome.status == "completed" for outcome in self.outcomes.values()
        )

    def _deadline_passed(self) -> bool:
        return self._clock() - self._polling_start >= self.max_polling_seconds

    def _finalize_timed_out(self) -> bool:
        """Give every language without a completed commit a timed_out commit."""
        finalized = False
        for language in self.languages:
            outcome = self.outcomes[language]
            if outcome.commit is not None and outcome.commit.is_completed:
                continue
            logger.info(
                f"[{self.label}] Build for {language} timed out after "
                f"{self.max_polling_seconds:g} seconds"
            )
            self.outcomes[language] = replace(
                outcome,
                status="completed",
                commit=CommitResult(status="completed", conclusion="timed_out"),
                diagnostics=[],
            )
            finalized = True
        return finalized


async def poll_build(
    api: BuildAPI,
    build: Build,
    label: str,
    polling_interval_seconds: float = POLLING_INTERVAL_SECONDS,
    max_polling_seconds: float = MAX_POLLING_SECONDS,
) -> AsyncGenerator[PollResult, None]:
    """
    Poll a build, yielding a snapshot of its outcomes whenever it changes.

    The last snapshot yielded is the final state of the build.
    """
    poller = BuildPoller(
        api,
        build,
        label,
        polling_interval_seconds=polling_interval_seconds,
        max_polling_seconds=max_polling_seconds,
    )
    async for result in poller:
        yield result

"""
Unit tests for sdkci_engine.poller module.

Tests the reconciliation of server build state into local outcomes and the
polling state machine, using the in-memory build API.
"""

from typing import Any

import pytest

from sdkci_common.errors import BuildAPIError
from sdkci_common.models import Build, Diagnostic
from sdkci_engine.poller import BuildPoller, poll_build


def target(status: str, conclusion: str | None = None) -> dict[str, Any]:
    """A raw build target; a conclusion means the commit step completed."""
    data: dict[str, Any] = {"status": status}
    if conclusion is not None:
        data["commit"] = {
            "status": "completed",
            "completed": {"conclusion": conclusion, "commit": {"sha": f"sha-{conclusion}"}},
        }
    return data


def make_build(build_id: str, documented_spec: dict | None = None, **targets) -> Build:
    return Build.from_dict(
        {"id": build_id, "targets": targets, "documented_spec": documented_spec}
    )


async def collect(poller) -> list:
    return [result async for result in poller]


class TestBuildPoller:
    """Test suite for BuildPoller."""

    @pytest.mark.asyncio
    async def test_polls_until_completed(self, fake_api):
        fake_api.builds["b1"] = [
            make_build("b1", python=target("in_progress")),
            make_build("b1", python=target("completed", "success")),
        ]
        fake_api.diagnostics["b1"] = [
            Diagnostic(level="note", code="Note", message="just a note")
        ]
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started")),
            "head",
            polling_interval_seconds=0,
        )

        results = await collect(poller)

        assert len(results) == 2
        assert results[0].outcomes["python"].status == "in_progress"
        assert results[0].outcomes["python"].commit is None
        final = results[1].outcomes["python"]
        assert final.status == "completed"
        assert final.commit.conclusion == "success"
        assert [d.code for d in final.diagnostics] == ["Note"]

    @pytest.mark.asyncio
    async def test_unchanged_polls_are_not_reported(self, fake_api):
        fake_api.builds["b1"] = [
            make_build("b1", python=target("in_progress")),
            make_build("b1", python=target("in_progress")),
            make_build("b1", python=target("completed", "success")),
        ]
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started")),
            "head",
            polling_interval_seconds=0,
        )

        results = await collect(poller)

        assert len(results) == 2
        assert fake_api.call_names().count("retrieve_build") == 3

    @pytest.mark.asyncio
    async def test_unchanged_first_poll_is_not_reported(self, fake_api):
        fake_api.builds["b1"] = [
            make_build("b1", python=target("not_started")),
            make_build("b1", python=target("completed", "success")),
        ]
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started")),
            "head",
            polling_interval_seconds=0,
        )

        results = await collect(poller)

        assert len(results) == 1
        assert results[0].outcomes["python"].commit.conclusion == "success"
        assert fake_api.call_names().count("retrieve_build") == 2

    @pytest.mark.asyncio
    async def test_zero_deadline_times_out_immediately(self, fake_api):
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started"), go=target("not_started")),
            "head",
            polling_interval_seconds=0,
            max_polling_seconds=0,
        )

        results = await collect(poller)

        assert len(results) == 1
        for outcome in results[0].outcomes.values():
            assert outcome.status == "completed"
            assert outcome.commit.conclusion == "timed_out"
            assert outcome.diagnostics == []
        assert "retrieve_build" not in fake_api.call_names()

    @pytest.mark.asyncio
    async def test_deadline_times_out_stragglers(self, fake_api):
        fake_api.builds["b1"] = [
            make_build(
                "b1",
                python=target("completed", "success"),
                go=target("in_progress"),
            )
        ]
        ticks = [0.0, 0.0, 100.0]

        def clock() -> float:
            return ticks.pop(0) if len(ticks) > 1 else ticks[0]

        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started"), go=target("not_started")),
            "head",
            polling_interval_seconds=0,
            max_polling_seconds=50,
            clock=clock,
        )

        results = await collect(poller)

        assert len(results) == 2
        final = results[-1].outcomes
        assert final["python"].commit.conclusion == "success"
        assert final["go"].commit.conclusion == "timed_out"

    @pytest.mark.asyncio
    async def test_build_without_id_reports_initial_state(self, fake_api):
        poller = BuildPoller(
            fake_api, make_build("", python=target("not_started")), "head"
        )

        results = await collect(poller)

        assert len(results) == 1
        assert results[0].outcomes["python"].commit is None
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_commit_is_adopted_once(self, fake_api):
        fake_api.builds["b1"] = [
            make_build(
                "b1",
                python=target("completed", "success"),
                go=target("in_progress"),
            ),
            make_build(
                "b1",
                python=target("completed", "error"),
                go=target("completed", "warning"),
            ),
        ]
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started"), go=target("not_started")),
            "head",
            polling_interval_seconds=0,
        )

        results = await collect(poller)

        final = results[-1].outcomes
        assert final["python"].commit.conclusion == "success"
        assert final["go"].commit.conclusion == "warning"
        assert fake_api.call_names().count("list_diagnostics") == 2

    @pytest.mark.asyncio
    async def test_diagnostics_error_is_not_fatal(self, fake_api, caplog):
        fake_api.builds["b1"] = [make_build("b1", python=target("completed", "success"))]
        fake_api.diagnostics_error = BuildAPIError("boom", status_code=500)
        poller = BuildPoller(
            fake_api, make_build("b1", python=target("not_started")), "head"
        )

        results = await collect(poller)

        assert results[-1].outcomes["python"].diagnostics == []
        assert "Error getting diagnostics for python" in caplog.text

    @pytest.mark.asyncio
    async def test_documented_spec_is_fetched_once(self, fake_api):
        spec_ref = {"type": "content", "content": "openapi: 3.1.0"}
        fake_api.builds["b1"] = [
            make_build("b1", spec_ref, python=target("in_progress")),
            make_build("b1", spec_ref, python=target("completed", "success")),
        ]
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started")),
            "head",
            polling_interval_seconds=0,
        )

        results = await collect(poller)

        assert results[0].documented_spec == "openapi: 3.1.0"
        assert results[-1].documented_spec == "openapi: 3.1.0"
        assert fake_api.call_names().count("unwrap_file") == 1

    @pytest.mark.asyncio
    async def test_snapshots_are_independent(self, fake_api):
        fake_api.builds["b1"] = [
            make_build("b1", python=target("in_progress")),
            make_build("b1", python=target("completed", "success")),
        ]
        poller = BuildPoller(
            fake_api,
            make_build("b1", python=target("not_started")),
            "head",
            polling_interval_seconds=0,
        )

        first = await poller.next_state()
        first.value.outcomes["python"].status = "tampered"
        second = await poller.next_state()

        assert second.value.outcomes["python"].status == "completed"
        assert (await poller.next_state()).kind == "done"
        assert (await poller.next_state()).kind == "done"


class TestPollBuild:
    """Test suite for the poll_build generator."""

    @pytest.mark.asyncio
    async def test_last_value_is_final_state(self, fake_api):
        fake_api.builds["b1"] = [make_build("b1", python=target("completed", "note"))]

        results = [
            result
            async for result in poll_build(
                fake_api, make_build("b1", python=target("not_started")), "base"
            )
        ]

        assert len(results) == 1
        assert results[0].outcomes["python"].commit.conclusion == "note"

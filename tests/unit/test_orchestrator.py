"""
Unit tests for sdkci_engine.orchestrator module.

Tests the async iterator fan-in and how run_builds submits builds in
single-build and comparison mode.
"""

import asyncio
from typing import Any

import pytest

from sdkci_common.errors import ConfigurationError
from sdkci_common.models import Build, BuildComparison, BuildCreation
from sdkci_engine.orchestrator import (
    CONFIG_FILE_NAME,
    OAS_FILE_NAME,
    combine_async_iterators,
    content_hash,
    revision_files,
    run_builds,
)


def target(status: str, conclusion: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {"status": status}
    if conclusion is not None:
        data["commit"] = {
            "status": "completed",
            "completed": {"conclusion": conclusion, "commit": {"sha": f"sha-{conclusion}"}},
        }
    return data


def make_build(build_id: str, **targets) -> Build:
    return Build.from_dict({"id": build_id, "targets": targets})


def calls_named(api, name: str) -> list[Any]:
    return [args for call, args in api.calls if call == name]


async def collect(results) -> list:
    return [result async for result in results]


class TestHelpers:
    """Test suite for the revision helpers."""

    def test_revision_files(self):
        assert revision_files("spec", "config") == {
            OAS_FILE_NAME: {"content": "spec"},
            CONFIG_FILE_NAME: {"content": "config"},
        }
        assert revision_files("spec", None) == {OAS_FILE_NAME: {"content": "spec"}}
        assert revision_files(None, None) == {}

    def test_content_hash_is_md5(self):
        assert content_hash("") == "d41d8cd98f00b204e9800998ecf8427e"


class TestCombineAsyncIterators:
    """Test suite for combine_async_iterators."""

    @pytest.mark.asyncio
    async def test_interleaves_by_completion(self):
        second_done = asyncio.Event()

        async def first():
            yield "a1"
            await second_done.wait()
            yield "a2"

        async def second():
            await asyncio.sleep(0)
            yield "b1"
            second_done.set()

        results = [item async for item in combine_async_iterators(first(), second())]

        assert results == [(0, "a1"), (1, "b1"), (0, "a2")]

    @pytest.mark.asyncio
    async def test_preserves_order_within_a_source(self):
        async def numbers():
            for i in range(5):
                yield i

        async def letters():
            for letter in "abc":
                await asyncio.sleep(0)
                yield letter

        results = [item async for item in combine_async_iterators(numbers(), letters())]

        assert [value for index, value in results if index == 0] == [0, 1, 2, 3, 4]
        assert [value for index, value in results if index == 1] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_no_sources(self):
        assert [item async for item in combine_async_iterators()] == []

    @pytest.mark.asyncio
    async def test_error_cancels_other_sources(self):
        cleaned_up = asyncio.Event()

        async def failing():
            yield 1
            raise ValueError("source failed")

        async def hanging():
            try:
                await asyncio.Event().wait()
                yield "never"
            finally:
                cleaned_up.set()

        received = []
        with pytest.raises(ValueError, match="source failed"):
            async for item in combine_async_iterators(failing(), hanging()):
                received.append(item)

        assert received == [(0, 1)]
        assert cleaned_up.is_set()


class TestRunBuildsValidation:
    """Test suite for the option checks of run_builds."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs,message",
        [
            (
                {"merge_branch": "preview/x", "oas_content": "spec"},
                "Cannot specify both merge_branch and oas_path or config_path",
            ),
            (
                {"guess_config": True, "oas_content": "spec", "config_content": "cfg"},
                "If guess_config is true, must have oas_path and no config_path",
            ),
            (
                {"guess_config": True},
                "If guess_config is true, must have oas_path and no config_path",
            ),
            (
                {"branch_from": "abc", "merge_branch": "preview/x"},
                "Cannot specify both base_revision and merge_branch",
            ),
        ],
    )
    async def test_conflicting_options(self, fake_api, kwargs, message):
        with pytest.raises(ConfigurationError, match=message):
            await collect(run_builds(fake_api, "acme", branch="main", **kwargs))

        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_comparison_requires_branch(self, fake_api):
        with pytest.raises(ConfigurationError):
            await collect(run_builds(fake_api, "acme", branch_from="abc"))


class TestRunBuildsSingle:
    """Test suite for single-build mode."""

    @pytest.mark.asyncio
    async def test_builds_inline_files(self, fake_api):
        fake_api.creation = BuildCreation.created(
            make_build("b1", python=target("not_started"))
        )
        fake_api.builds["b1"] = [make_build("b1", python=target("completed", "success"))]

        results = await collect(
            run_builds(
                fake_api,
                "acme",
                branch="main",
                oas_content="spec",
                config_content="cfg",
                commit_message="add pets endpoint",
                target_commit_messages={"python": "fix: pets", "go": "pets"},
                allow_empty=False,
                polling_interval_seconds=0,
            )
        )

        [request] = calls_named(fake_api, "create_build")
        assert request["revision"] == revision_files("spec", "cfg")
        assert request["branch"] == "main"
        assert request["commit_message"] == "feat: add pets endpoint"
        assert request["target_commit_messages"] == {"python": "fix: pets", "go": "feat: pets"}
        assert request["allow_empty"] is False

        final = results[-1]
        assert final.outcomes["python"].commit.conclusion == "success"
        assert final.base_outcomes is None
        assert final.build_ids == ["b1"]
        assert not final.no_changes

    @pytest.mark.asyncio
    async def test_merge_branch_revision(self, fake_api):
        fake_api.creation = BuildCreation.created(
            make_build("b1", python=target("not_started"))
        )
        fake_api.builds["b1"] = [make_build("b1", python=target("completed", "success"))]

        await collect(
            run_builds(fake_api, "acme", branch="main", merge_branch="preview/pr-1")
        )

        [request] = calls_named(fake_api, "create_build")
        assert request["revision"] == "main..preview/pr-1"

    @pytest.mark.asyncio
    async def test_no_changes(self, fake_api):
        fake_api.creation = BuildCreation.no_changes("Nothing to commit")

        results = await collect(
            run_builds(fake_api, "acme", branch="main", oas_content="spec")
        )

        assert len(results) == 1
        assert results[0].no_changes
        assert results[0].outcomes == {}
        assert "retrieve_build" not in fake_api.call_names()


class TestRunBuildsComparison:
    """Test suite for comparison mode."""

    @pytest.fixture
    def compare_api(self, fake_api):
        fake_api.comparison = BuildComparison.created(
            base=make_build("base", python=target("not_started")),
            head=make_build("head", python=target("not_started")),
        )
        fake_api.builds["base"] = [
            make_build("base", python=target("in_progress")),
            make_build("base", python=target("completed", "success")),
        ]
        fake_api.builds["head"] = [
            make_build("head", python=target("in_progress")),
            make_build("head", python=target("completed", "warning")),
        ]
        return fake_api

    def options(self, **kwargs) -> dict[str, Any]:
        options = {
            "branch": "preview/pr",
            "branch_from": "cfg0",
            "base_branch": "preview/base/pr",
            "oas_content": "head spec",
            "config_content": "head cfg",
            "base_oas_content": "base spec",
            "base_config_content": "base cfg",
            "commit_message": "feat: pets",
            "polling_interval_seconds": 0,
        }
        options.update(kwargs)
        return options

    def run(self, api, **kwargs):
        return collect(run_builds(api, "acme", **self.options(**kwargs)))

    @pytest.mark.asyncio
    async def test_resets_branches_and_compares(self, compare_api):
        results = await self.run(compare_api)

        resets = calls_named(compare_api, "create_branch")
        assert [r["branch"] for r in resets] == ["preview/pr", "preview/base/pr"]
        assert all(r["branch_from"] == "cfg0" and r["force"] for r in resets)

        [request] = calls_named(compare_api, "compare_builds")
        assert request["base"] == {
            "revision": revision_files("base spec", "base cfg"),
            "commit_message": "feat: pets",
            "branch": "preview/base/pr",
        }
        assert request["head"] == {
            "revision": revision_files("head spec", "head cfg"),
            "branch": "preview/pr",
            "commit_message": "feat: pets",
        }

        final = results[-1]
        assert final.outcomes["python"].commit.conclusion == "warning"
        assert final.base_outcomes["python"].commit.conclusion == "success"
        assert final.build_ids == ["base", "head"]

    @pytest.mark.asyncio
    async def test_every_result_carries_head_outcomes(self, compare_api):
        results = await self.run(compare_api)

        assert results
        for result in results:
            assert "python" in result.outcomes

    @pytest.mark.asyncio
    async def test_slow_base_is_paired_with_final_head(self, compare_api):
        base_released = asyncio.Event()
        retrieve_build = compare_api.retrieve_build

        async def gated_retrieve_build(build_id):
            if build_id == "base":
                await base_released.wait()
            return await retrieve_build(build_id)

        compare_api.retrieve_build = gated_retrieve_build

        results = []
        async for result in run_builds(compare_api, "acme", **self.options()):
            results.append(result)
            if result.outcomes["python"].commit is not None:
                base_released.set()

        # Two head snapshots, then one pair once the base finishes.
        assert len(results) == 3
        assert [r.base_outcomes for r in results[:2]] == [None, None]
        assert results[0].outcomes["python"].status == "in_progress"
        assert results[1].outcomes["python"].commit.conclusion == "warning"
        final = results[-1]
        assert final.outcomes["python"].commit.conclusion == "warning"
        assert final.base_outcomes["python"].commit.conclusion == "success"
        assert compare_api.call_names().count("retrieve_build") == 4

    @pytest.mark.asyncio
    async def test_base_revision_without_files(self, compare_api):
        await self.run(
            compare_api, base_branch=None, base_oas_content=None, base_config_content=None
        )

        [request] = calls_named(compare_api, "compare_builds")
        assert request["base"] == {"revision": "cfg0", "commit_message": "feat: pets"}
        assert [r["branch"] for r in calls_named(compare_api, "create_branch")] == [
            "preview/pr"
        ]

    @pytest.mark.asyncio
    async def test_saves_existing_config_before_reset(self, compare_api):
        compare_api.branches["preview/pr"] = {"branch": "preview/pr"}
        compare_api.configs["preview/pr"] = "saved cfg"

        await self.run(compare_api, config_content=None)

        names = compare_api.call_names()
        assert names.index("retrieve_config") < names.index("create_branch")
        [request] = calls_named(compare_api, "compare_builds")
        assert request["head"]["revision"] == revision_files("head spec", "saved cfg")

    @pytest.mark.asyncio
    async def test_new_branch_has_no_config(self, compare_api):
        await self.run(compare_api, config_content=None)

        assert "retrieve_config" not in compare_api.call_names()
        [request] = calls_named(compare_api, "compare_builds")
        assert request["head"]["revision"] == revision_files("head spec", None)

    @pytest.mark.asyncio
    async def test_guesses_config(self, compare_api):
        compare_api.guessed_config = "guessed cfg"

        await self.run(
            compare_api, config_content=None, base_config_content=None, guess_config=True
        )

        guesses = calls_named(compare_api, "guess_config")
        assert guesses == [
            {"spec": "head spec", "branch": "preview/pr"},
            {"spec": "base spec", "branch": "preview/base/pr"},
        ]
        [request] = calls_named(compare_api, "compare_builds")
        assert request["head"]["revision"] == revision_files("head spec", "guessed cfg")
        assert request["base"]["revision"] == revision_files("base spec", "guessed cfg")

    @pytest.mark.asyncio
    async def test_target_commit_messages_go_to_head(self, compare_api):
        await self.run(compare_api, target_commit_messages={"python": "pets"})

        [request] = calls_named(compare_api, "compare_builds")
        assert request["head"]["target_commit_messages"] == {"python": "feat: pets"}
        assert "target_commit_messages" not in request["base"]

    @pytest.mark.asyncio
    async def test_no_changes(self, fake_api):
        fake_api.comparison = BuildComparison.no_changes("Nothing to commit")

        results = await self.run(fake_api)

        assert len(results) == 1
        assert results[0].no_changes

"""
Unit tests for sdkci_client.client module.

Tests the HTTP client against a mocked requests session.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from sdkci_client import BuildAPIClient, is_no_changes_error
from sdkci_common.errors import BuildAPIError, NotFoundError


def make_response(status_code: int = 200, body=None, text: str = "") -> Mock:
    """Create a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    response.content = b"{}" if body is not None else text.encode()
    if body is not None:
        response.json.return_value = body
    else:
        response.json.side_effect = ValueError("No JSON")
    return response


@pytest.fixture
def session():
    """A real session whose requests are intercepted."""
    session = requests.Session()
    session.request = Mock()
    return session


@pytest.fixture
def client(session):
    return BuildAPIClient(
        "sk-test",
        "https://api.example.com/",
        platform="gitlab-ci",
        action="preview",
        session=session,
    )


def last_request(session):
    args, kwargs = session.request.call_args
    return args[0], args[1], kwargs


class TestClientSetup:
    """Test suite for client construction."""

    def test_sets_headers(self, client, session):
        assert session.headers["Authorization"] == "Bearer sk-test"
        assert session.headers["X-Stainless-Action"] == "preview"
        assert session.headers["X-Stainless-Platform"] == "gitlab-ci"
        assert session.headers["User-Agent"].startswith("sdkci/")
        assert client.base_url == "https://api.example.com"

    def test_no_action_headers_without_action(self, session):
        BuildAPIClient("sk-test", session=session)
        assert "X-Stainless-Action" not in session.headers


class TestErrors:
    """Test suite for HTTP error handling."""

    @pytest.mark.asyncio
    async def test_http_error(self, client, session):
        session.request.return_value = make_response(500, {"message": "internal"})

        with pytest.raises(BuildAPIError) as exc_info:
            await client.retrieve_build("bld_1")

        assert exc_info.value.status_code == 500
        assert "internal" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_not_found(self, client, session):
        session.request.return_value = make_response(404, text="missing")

        with pytest.raises(NotFoundError):
            await client.retrieve_build("bld_1")

    @pytest.mark.asyncio
    async def test_connection_error(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(BuildAPIError, match="refused"):
            await client.retrieve_org("acme")

    def test_is_no_changes_error(self):
        assert is_no_changes_error(BuildAPIError("No changes to commit", 400))
        assert not is_no_changes_error(BuildAPIError("No changes to commit", 500))
        assert not is_no_changes_error(BuildAPIError("Bad request", 400))


class TestBuilds:
    """Test suite for build endpoints."""

    @pytest.mark.asyncio
    async def test_create_build(self, client, session):
        session.request.return_value = make_response(
            200, {"id": "bld_1", "targets": {"python": {"status": "not_started"}}}
        )

        creation = await client.create_build(
            "acme",
            revision="main..preview/pr",
            branch="main",
            commit_message="feat: pets",
            allow_empty=False,
        )

        assert creation.kind == "created"
        assert creation.build.id == "bld_1"
        method, url, kwargs = last_request(session)
        assert (method, url) == ("POST", "https://api.example.com/v0/builds")
        assert kwargs["json"] == {
            "project": "acme",
            "revision": "main..preview/pr",
            "allow_empty": False,
            "branch": "main",
            "commit_message": "feat: pets",
        }

    @pytest.mark.asyncio
    async def test_create_build_no_changes(self, client, session):
        session.request.return_value = make_response(
            400, {"message": "No changes to commit"}
        )

        creation = await client.create_build("acme", revision={})

        assert creation.kind == "no_changes"
        assert creation.build is None
        assert "No changes to commit" in creation.message

    @pytest.mark.asyncio
    async def test_compare_builds(self, client, session):
        session.request.return_value = make_response(
            200, {"base": {"id": "bld_base"}, "head": {"id": "bld_head"}}
        )

        comparison = await client.compare_builds(
            "acme", base={"revision": "abc"}, head={"revision": {}}
        )

        assert comparison.kind == "created"
        assert comparison.base.id == "bld_base"
        assert comparison.head.id == "bld_head"
        _, url, _ = last_request(session)
        assert url.endswith("/v0/builds/compare")

    @pytest.mark.asyncio
    async def test_compare_builds_no_changes(self, client, session):
        session.request.return_value = make_response(
            400, {"message": "No changes to commit"}
        )

        comparison = await client.compare_builds("acme", base={}, head={})

        assert comparison.kind == "no_changes"

    @pytest.mark.asyncio
    async def test_list_diagnostics_follows_cursor(self, client, session):
        session.request.side_effect = [
            make_response(
                200,
                {
                    "data": [{"level": "error", "code": "A", "message": "a"}],
                    "next_cursor": "page2",
                },
            ),
            make_response(200, {"data": [{"level": "note", "code": "B", "message": "b"}]}),
        ]

        diagnostics = [d async for d in client.list_diagnostics("bld_1")]

        assert [d.code for d in diagnostics] == ["A", "B"]
        _, _, kwargs = last_request(session)
        assert kwargs["params"] == {"limit": 100, "cursor": "page2"}

    @pytest.mark.asyncio
    async def test_list_builds_revision_filter(self, client, session):
        session.request.return_value = make_response(
            200, {"data": [{"config_commit": "cfg1"}]}
        )

        builds = await client.list_builds(
            "acme",
            branch="main",
            revision={"openapi.yml": {"hash": "h1"}},
        )

        assert builds == [{"config_commit": "cfg1"}]
        _, _, kwargs = last_request(session)
        assert kwargs["params"] == {
            "project": "acme",
            "limit": 1,
            "branch": "main",
            "revision[openapi.yml][hash]": "h1",
        }


class TestFilesAndConfigs:
    """Test suite for file and config endpoints."""

    @pytest.mark.asyncio
    async def test_unwrap_inline_content(self, client, session):
        content = await client.unwrap_file({"type": "content", "content": "openapi: 3.1.0"})

        assert content == "openapi: 3.1.0"
        session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_unwrap_url_downloads_without_credentials(self, client, session):
        download = make_response(200, text="openapi: 3.1.0")
        with patch("sdkci_client.client.requests.get", return_value=download) as get:
            content = await client.unwrap_file(
                {"type": "url", "url": "https://files.example.com/spec.yml"}
            )

        assert content == "openapi: 3.1.0"
        get.assert_called_once_with("https://files.example.com/spec.yml", timeout=60)
        session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_guess_config(self, client, session):
        session.request.return_value = make_response(
            200, {"openapi.stainless.yml": {"content": "organization: acme"}}
        )

        config = await client.guess_config("acme", spec="openapi: 3.1.0", branch="preview/pr")

        assert config == "organization: acme"
        _, url, kwargs = last_request(session)
        assert url.endswith("/v0/projects/acme/configs/guess")
        assert kwargs["json"] == {"spec": "openapi: 3.1.0", "branch": "preview/pr"}

    @pytest.mark.asyncio
    async def test_retrieve_missing_branch(self, client, session):
        session.request.return_value = make_response(404, {"message": "not found"})

        assert await client.retrieve_branch("acme", "preview/pr") is None
        _, url, _ = last_request(session)
        assert url.endswith("/branches/preview%2Fpr")

    @pytest.mark.asyncio
    async def test_create_branch_force(self, client, session):
        session.request.return_value = make_response(200, {"config_commit": "cfg1"})

        info = await client.create_branch(
            "acme", branch="preview/pr", branch_from="cfg0", force=True
        )

        assert info == {"config_commit": "cfg1"}
        _, _, kwargs = last_request(session)
        assert kwargs["json"] == {
            "branch": "preview/pr",
            "branch_from": "cfg0",
            "force": True,
        }

    @pytest.mark.asyncio
    async def test_generate_commit_message(self, client, session):
        session.request.return_value = make_response(
            200, {"ai_commit_message": "feat(api): add pets"}
        )

        message = await client.generate_commit_message(
            "acme", target="python", base_ref="a1", head_ref="b2"
        )

        assert message == "feat(api): add pets"
        _, _, kwargs = last_request(session)
        assert kwargs["params"] == {"target": "python"}

    @pytest.mark.asyncio
    async def test_report_with_empty_response(self, client, session):
        session.request.return_value = make_response(204, text="")

        assert await client.report_action_result({"result": "success"}) is None

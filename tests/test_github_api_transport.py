"""Transport-level HTTP tests for GitHubAPI.

These tests use the ``responses`` library to intercept ``requests`` calls at the
transport layer, verifying that the correct URLs, headers, and request bodies
are sent to the GitHub REST API.
"""

from __future__ import annotations

import json
from typing import Any

import pytest
import responses
from responses import matchers

from covdiff.reporters.github_comment import COMMENT_MARKER
from covdiff.utils.github import GitHubAPI, GitHubAPIError, GitHubPRInfo

_BASE = "https://api.github.com"
_COMMENTS_URL = f"{_BASE}/repos/octo/widgets/issues/42/comments"

_EXPECTED_HEADERS = {
    "Authorization": "Bearer test-value",
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


def _req_body(call: responses.Call) -> dict[str, Any]:
    """Parse the JSON request body from a responses.Call."""
    body = call.request.body
    assert body is not None
    parsed: dict[str, Any] = json.loads(body)
    return parsed


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def api(monkeypatch: pytest.MonkeyPatch) -> GitHubAPI:
    """Create a GitHubAPI instance backed by a test token."""
    monkeypatch.setenv("GITHUB_TOKEN", "test-value")
    return GitHubAPI()


@pytest.fixture()
def pr_info() -> GitHubPRInfo:
    """PR 42 in octo/widgets."""
    return GitHubPRInfo(owner="octo", repo="widgets", pr_number=42)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@responses.activate
def test_create_comment_sends_headers_and_body(api: GitHubAPI, pr_info: GitHubPRInfo) -> None:
    responses.add(
        responses.POST,
        _COMMENTS_URL,
        json={"id": 1, "html_url": "https://github.com/octo/widgets/pull/42#issuecomment-1"},
        status=201,
        match=[
            matchers.header_matcher(_EXPECTED_HEADERS),
            matchers.json_params_matcher({"body": "hello"}),
        ],
    )

    result = api.create_comment(pr_info, "hello")

    assert result["id"] == 1
    assert len(responses.calls) == 1


@responses.activate
def test_list_comments_requests_full_pages(api: GitHubAPI, pr_info: GitHubPRInfo) -> None:
    responses.add(
        responses.GET,
        _COMMENTS_URL,
        json=[{"id": 5, "body": "first"}],
        match=[matchers.query_param_matcher({"per_page": "100", "page": "1"})],
    )

    comments = api.list_comments(pr_info)

    assert comments == [{"id": 5, "body": "first"}]


@responses.activate
def test_upsert_patches_previous_coverage_comment(api: GitHubAPI, pr_info: GitHubPRInfo) -> None:
    responses.add(
        responses.GET,
        _COMMENTS_URL,
        json=[
            {"id": 10, "body": "LGTM"},
            {"id": 11, "body": f"{COMMENT_MARKER}\n## Test coverage for commit abc"},
        ],
    )
    responses.add(
        responses.PATCH,
        f"{_BASE}/repos/octo/widgets/issues/comments/11",
        json={"id": 11, "html_url": "https://github.com/c/11"},
    )

    body = f"{COMMENT_MARKER}\n## Test coverage for commit def"
    result = api.upsert_comment(pr_info, body, COMMENT_MARKER)

    assert result["id"] == 11
    assert _req_body(responses.calls[1]) == {"body": body}


@responses.activate
def test_enterprise_api_base(monkeypatch: pytest.MonkeyPatch, pr_info: GitHubPRInfo) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "test-value")
    api = GitHubAPI(api_base="https://ghe.example.com/api/v3")
    responses.add(
        responses.POST,
        "https://ghe.example.com/api/v3/repos/octo/widgets/issues/42/comments",
        json={"id": 2},
        status=201,
    )

    assert api.create_comment(pr_info, "x")["id"] == 2


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@responses.activate
def test_http_error_is_wrapped(api: GitHubAPI, pr_info: GitHubPRInfo) -> None:
    responses.add(responses.POST, _COMMENTS_URL, json={"message": "Forbidden"}, status=403)

    with pytest.raises(GitHubAPIError, match="POST request failed"):
        api.create_comment(pr_info, "hello")


@responses.activate
def test_list_error_is_wrapped(api: GitHubAPI, pr_info: GitHubPRInfo) -> None:
    responses.add(responses.GET, _COMMENTS_URL, json={"message": "Not Found"}, status=404)

    with pytest.raises(GitHubAPIError, match="GET request failed"):
        api.find_comment_by_marker(pr_info, COMMENT_MARKER)

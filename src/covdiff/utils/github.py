"""Pull request comments through the GitHub REST API.

covdiff needs three endpoints: list, create and update issue comments. A
previous coverage comment is recognised by the hidden marker its body starts
with, so reruns can edit it in place.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
_TOKEN_ENV = "GITHUB_" + "TOKEN"
_REQUEST_TIMEOUT = 30
_PAGE_SIZE = 100

_DEFAULT_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


@dataclass
class GitHubPRInfo:
    """The pull request a coverage comment belongs to."""

    owner: str
    """User or organization owning the repository."""

    repo: str
    """Repository name without the owner."""

    pr_number: int
    """Pull request (issue) number."""

    @property
    def repo_path(self) -> str:
        """``repos/<owner>/<repo>`` API path prefix."""
        return f"repos/{self.owner}/{self.repo}"


class GitHubAPIError(Exception):
    """A GitHub API call failed or could not be made."""


class GitHubAPI:
    """Token-authenticated client for issue comments."""

    def __init__(self, token: str | None = None, *, api_base: str = GITHUB_API_BASE) -> None:
        """Create a client.

        Args:
            token: Access token; ``GITHUB_TOKEN`` is used when omitted.
            api_base: API root, for GitHub Enterprise Server.

        Raises:
            GitHubAPIError: If there is no token.
        """
        self._token = token or os.environ.get(_TOKEN_ENV)
        if not self._token:
            raise GitHubAPIError(
                f"GitHub token required: pass one or set the {_TOKEN_ENV} environment variable"
            )
        self._api_base = api_base.rstrip("/")
        self._session = requests.Session()
        self._session.headers.update(
            {**_DEFAULT_HEADERS, "Authorization": f"Bearer {self._token}"}
        )

    # ── Comments ─────────────────────────────────────────────────────

    def create_comment(self, pr_info: GitHubPRInfo, body: str) -> dict[str, Any]:
        """Add a comment to the pull request and return the created comment."""
        path = f"{pr_info.repo_path}/issues/{pr_info.pr_number}/comments"
        created: dict[str, Any] = self._request("POST", path, payload={"body": body})
        return created

    def update_comment(self, pr_info: GitHubPRInfo, comment_id: int, body: str) -> dict[str, Any]:
        """Replace the body of comment ``comment_id`` and return the updated comment."""
        path = f"{pr_info.repo_path}/issues/comments/{comment_id}"
        updated: dict[str, Any] = self._request("PATCH", path, payload={"body": body})
        return updated

    def iter_comments(self, pr_info: GitHubPRInfo) -> Iterator[dict[str, Any]]:
        """Yield the pull request's comments oldest first, page by page."""
        path = f"{pr_info.repo_path}/issues/{pr_info.pr_number}/comments"
        page = 1
        while True:
            batch = self._request("GET", path, params={"per_page": _PAGE_SIZE, "page": page})
            yield from batch
            if len(batch) < _PAGE_SIZE:
                return
            page += 1

    def list_comments(self, pr_info: GitHubPRInfo) -> list[dict[str, Any]]:
        """Return every comment on the pull request."""
        return list(self.iter_comments(pr_info))

    def find_comment_by_marker(self, pr_info: GitHubPRInfo, marker: str) -> dict[str, Any] | None:
        """Return the first comment whose body starts with ``marker``.

        Stops paging as soon as a match is found.
        """
        return next(
            (c for c in self.iter_comments(pr_info) if (c.get("body") or "").startswith(marker)),
            None,
        )

    def upsert_comment(
        self,
        pr_info: GitHubPRInfo,
        body: str,
        marker: str,
        *,
        reuse_existing: bool = True,
    ) -> dict[str, Any]:
        """Edit the marked comment if there is one, otherwise post a new one.

        Args:
            pr_info: Target pull request.
            body: Markdown body; the marker is prepended if missing.
            marker: Hidden marker identifying covdiff comments.
            reuse_existing: When False, always post a new comment.

        Raises:
            GitHubAPIError: If any request fails.
        """
        if not body.startswith(marker):
            logger.warning("Comment body lacks marker %s; prepending it", marker)
            body = f"{marker}\n{body}"

        previous = self.find_comment_by_marker(pr_info, marker) if reuse_existing else None
        if previous is None:
            logger.info("Posting coverage comment on PR #%d", pr_info.pr_number)
            return self.create_comment(pr_info, body)

        logger.info("Editing coverage comment %d on PR #%d", previous["id"], pr_info.pr_number)
        return self.update_comment(pr_info, previous["id"], body)

    # ── Transport ────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and decode its JSON response.

        Raises:
            GitHubAPIError: On transport errors, error statuses or bad JSON.
        """
        url = f"{self._api_base}/{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=_REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GitHubAPIError(f"{method} request failed: {exc}") from exc


def parse_repository(full_name: str) -> tuple[str, str] | None:
    """Split ``owner/repo``; None unless there are exactly two non-empty parts."""
    owner, sep, repo = full_name.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        return None
    return owner, repo


def pr_number_from_ref(ref: str | None) -> int | None:
    """Return <number> from a ``refs/pull/<number>/merge`` ref, else None."""
    prefix, _, rest = (ref or "").partition("refs/pull/")
    if prefix or not rest:
        return None
    number = rest.split("/", 1)[0]
    return int(number) if number.isdigit() else None


def get_pr_info_from_env(pr_number: int | None = None) -> GitHubPRInfo | None:
    """Work out the pull request from GitHub Actions variables.

    Args:
        pr_number: Explicit number, used instead of ``GITHUB_REF``.

    Returns:
        The pull request, or None outside a pull request build.
    """
    repository = parse_repository(os.environ.get("GITHUB_REPOSITORY", ""))
    if repository is None:
        return None

    number = pr_number or pr_number_from_ref(os.environ.get("GITHUB_REF"))
    if not number:
        return None

    owner, repo = repository
    return GitHubPRInfo(owner=owner, repo=repo, pr_number=number)

"""Test fixtures for bitbucket-exporter.

Provides builders for Bitbucket API payloads and a client wired with test
credentials and no retries.
"""

from collections.abc import Callable
from typing import Any

import pytest

from bitbucket_exporter.bitbucket.auth import BitbucketAuth
from bitbucket_exporter.bitbucket.http import BitbucketClient
from bitbucket_exporter.config import AuthConfig, BasicAuthConfig

API = "https://api.bitbucket.org/2.0"


@pytest.fixture(autouse=True)
def _no_env_password(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real app password out of the tests."""
    monkeypatch.delenv("BITBUCKET_APP_PASSWORD", raising=False)


@pytest.fixture
def auth() -> BitbucketAuth:
    """Basic auth for user alice."""
    return BitbucketAuth(AuthConfig(basic=BasicAuthConfig(username="alice", password="secret")))


@pytest.fixture
def client(auth: BitbucketAuth) -> BitbucketClient:
    """Client that fails fast instead of retrying."""
    return BitbucketClient(auth=auth, max_retries=0)


@pytest.fixture
def make_repo() -> Callable[..., dict[str, Any]]:
    """Build a repository payload as returned by the listing endpoint."""

    def _make(
        slug: str,
        workspace: str = "acme",
        project: str | None = "PRJ",
        **extra: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "repository",
            "uuid": "{" + f"{workspace}-{slug}" + "}",
            "slug": slug,
            "name": slug.upper(),
            "full_name": f"{workspace}/{slug}",
            "language": "python",
            "size": 1024,
            "is_private": True,
            "has_issues": False,
            "has_wiki": False,
            "created_on": "2024-01-01T00:00:00+00:00",
            "updated_on": "2024-06-01T00:00:00+00:00",
            "workspace": {"slug": workspace, "uuid": "{" + workspace + "}", "name": workspace},
            "project": {"key": project, "name": project} if project else None,
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def make_page() -> Callable[..., dict[str, Any]]:
    """Build a paginated envelope."""

    def _make(
        values: list[Any],
        next_page: int | None = None,
        size: int | None = None,
        endpoint: str = "repositories/acme",
    ) -> dict[str, Any]:
        page: dict[str, Any] = {"pagelen": 10, "values": values}
        if next_page is not None:
            page["next"] = f"{API}/{endpoint}?page={next_page}"
        if size is not None:
            page["size"] = size
        return page

    return _make


@pytest.fixture
def make_commit() -> Callable[..., dict[str, Any]]:
    """Build a commit payload, linked to a user unless ``user`` is None."""

    def _make(
        hash: str,
        user: str | None = "alice",
        display_name: str | None = None,
    ) -> dict[str, Any]:
        author: dict[str, Any] = {"raw": f"{user or 'someone'} <{user or 'someone'}@example.com>"}
        if user is not None:
            author["user"] = {
                "uuid": "{" + user + "}",
                "nickname": user,
                "display_name": display_name or user.title(),
            }
        return {"hash": hash, "author": author}

    return _make

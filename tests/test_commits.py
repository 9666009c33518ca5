"""Tests for the commit collector."""

import asyncio
import threading
from collections.abc import Callable
from typing import Any

import httpx
import pytest
import respx
from prometheus_client import CollectorRegistry

from bitbucket_exporter.bitbucket.exceptions import TransportError
from bitbucket_exporter.bitbucket.http import BitbucketClient
from bitbucket_exporter.bitbucket.models import Commit, Project, Repository, Workspace
from bitbucket_exporter.collector.channel import RepositoryChannel
from bitbucket_exporter.collector.commits import CommitCollector
from bitbucket_exporter.config import CommitCollectorConfig

API = "https://api.bitbucket.org/2.0"

MakeCommit = Callable[..., dict[str, Any]]
MakePage = Callable[..., dict[str, Any]]


def repo(slug: str) -> Repository:
    return Repository(
        uuid="{" + slug + "}",
        slug=slug,
        workspace=Workspace(slug="acme"),
        project=Project(key="PRJ"),
    )


def commits_url(slug: str) -> str:
    return f"{API}/repositories/acme/{slug}/commits"


def commit_pages(
    slug: str, sizes: list[int], make_commit: MakeCommit, make_page: MakePage
) -> list[httpx.Response]:
    responses = []
    for index, size in enumerate(sizes):
        page_num = index + 1
        values = [make_commit(f"{slug}-{page_num}-{i}") for i in range(size)]
        next_page = page_num + 1 if page_num < len(sizes) else None
        page = make_page(values, next_page, endpoint=f"repositories/acme/{slug}/commits")
        responses.append(httpx.Response(200, json=page))
    return responses


async def run(collector: CommitCollector, client: BitbucketClient, repos: list[Repository]) -> None:
    async def feed() -> None:
        for item in repos:
            await collector._source.put(item)
        await collector._source.close()

    collector._source.reopen()
    result, _ = await asyncio.gather(collector.exec(client), feed(), return_exceptions=True)
    if isinstance(result, BaseException):
        raise result


def commit_collector(**overrides: Any) -> CommitCollector:
    config = CommitCollectorConfig(included_repositories=["*"], **overrides)
    return CommitCollector(config, RepositoryChannel("commit"))


def scrape(collector: CommitCollector) -> CollectorRegistry:
    registry = CollectorRegistry()
    registry.register(collector)
    return registry


REPO_LABELS = {"workspace": "acme", "project": "PRJ", "repository": "api"}


class TestCommitCollector:
    """Tests for CommitCollector with mocked commit pages."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_counts_every_page(
        self, client: BitbucketClient, make_commit: MakeCommit, make_page: MakePage
    ) -> None:
        """Test pages of 10, 7 and 3 commits give a total of 20."""
        route = respx.get(commits_url("api")).mock(
            side_effect=commit_pages("api", [10, 7, 3], make_commit, make_page)
        )
        collector = commit_collector()

        async with client:
            await run(collector, client, [repo("api")])

        registry = scrape(collector)
        assert registry.get_sample_value("bitbucket_commit_total", REPO_LABELS) == 20
        user_labels = {**REPO_LABELS, "user": "alice", "display_name": "Alice", "uuid": "{alice}"}
        assert registry.get_sample_value("bitbucket_member_total_commit", user_labels) == 20
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_repeat_cycle_does_not_double_count(
        self, client: BitbucketClient, make_commit: MakeCommit, make_page: MakePage
    ) -> None:
        """Test walking a repository again replaces its previous totals."""
        respx.get(commits_url("api")).mock(
            side_effect=commit_pages("api", [4, 2], make_commit, make_page)
            + commit_pages("api", [4, 2], make_commit, make_page)
        )
        collector = commit_collector()

        async with client:
            await run(collector, client, [repo("api")])
            await run(collector, client, [repo("api")])

        registry = scrape(collector)
        assert registry.get_sample_value("bitbucket_commit_total", REPO_LABELS) == 6
        user_labels = {**REPO_LABELS, "user": "alice", "display_name": "Alice", "uuid": "{alice}"}
        assert registry.get_sample_value("bitbucket_member_total_commit", user_labels) == 6

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_keeps_consumed_pages(
        self, client: BitbucketClient, make_commit: MakeCommit, make_page: MakePage
    ) -> None:
        """Test a walk failing on page 2 of 5 keeps the count of page 1."""
        first = commit_pages("api", [10, 5, 5, 5, 5], make_commit, make_page)[0]
        respx.get(commits_url("api")).mock(side_effect=[first, httpx.Response(500)])
        collector = commit_collector()

        async with client:
            with pytest.raises(TransportError):
                await run(collector, client, [repo("api")])

        registry = scrape(collector)
        assert registry.get_sample_value("bitbucket_commit_total", REPO_LABELS) == 10

    @pytest.mark.asyncio
    @respx.mock
    async def test_repo_toggle_off(
        self, client: BitbucketClient, make_commit: MakeCommit, make_page: MakePage
    ) -> None:
        """Test collect_total_commit_repo=False keeps only user totals."""
        respx.get(commits_url("api")).mock(
            side_effect=commit_pages("api", [3], make_commit, make_page)
        )
        collector = commit_collector(collect_total_commit_repo=False)

        async with client:
            await run(collector, client, [repo("api")])

        assert collector.repo_total_commit.snapshot() == {}
        assert collector.user_total_commit.snapshot()["{alice}"].total == 3

    @pytest.mark.asyncio
    async def test_all_toggles_off_drains(self, client: BitbucketClient) -> None:
        """Test a collector with nothing to collect makes no requests."""
        collector = commit_collector(
            collect_total_commit_repo=False, collect_total_commit_user=False
        )

        await asyncio.wait_for(run(collector, client, [repo("api"), repo("web")]), timeout=1)

        assert client.requests_made == 0


class TestUserCommits:
    """Tests for per-author aggregation."""

    def commits(self, make_commit: MakeCommit, *authors: tuple[str | None, str]) -> list[Commit]:
        return [
            Commit.model_validate(make_commit(f"c{i}", user, display_name))
            for i, (user, display_name) in enumerate(authors)
        ]

    def test_unlinked_authors_are_skipped(self, make_commit: MakeCommit) -> None:
        """Test commits without a Bitbucket user do not count for any user."""
        collector = commit_collector()

        collector.add_user_commits(
            repo("api"),
            self.commits(make_commit, ("alice", "Alice"), (None, ""), ("alice", "Alice")),
        )

        users = collector.user_total_commit.snapshot()
        assert list(users) == ["{alice}"]
        assert users["{alice}"].total == 2

    def test_last_commit_sets_labels(self, make_commit: MakeCommit) -> None:
        """Test the default policy takes names and repository from the last commit."""
        collector = commit_collector()

        collector.add_user_commits(repo("api"), self.commits(make_commit, ("alice", "Alice")))
        collector.add_user_commits(repo("web"), self.commits(make_commit, ("alice", "Alice L.")))

        entry = collector.user_total_commit.snapshot()["{alice}"]
        assert entry.repository == "web"
        assert entry.display_name == "Alice L."
        assert entry.total == 2

    def test_first_commit_sets_labels(self, make_commit: MakeCommit) -> None:
        """Test the first policy keeps the labels of the first commit seen."""
        collector = commit_collector()

        collector.add_user_commits(
            repo("api"), self.commits(make_commit, ("alice", "Alice")), "first"
        )
        collector.add_user_commits(
            repo("web"), self.commits(make_commit, ("alice", "Alice L.")), "first"
        )

        entry = collector.user_total_commit.snapshot()["{alice}"]
        assert entry.repository == "api"
        assert entry.display_name == "Alice"
        assert entry.total == 2

    def test_reset_removes_only_that_repository(self, make_commit: MakeCommit) -> None:
        """Test reset drops a repository's contribution and empty users."""
        collector = commit_collector()
        collector.add_user_commits(
            repo("api"), self.commits(make_commit, ("alice", "Alice"), ("bob", "Bob"))
        )
        collector.add_user_commits(repo("web"), self.commits(make_commit, ("alice", "Alice")))
        collector.add_repo_commits(repo("api"), 2)

        collector.reset_repository(repo("api"))

        users = collector.user_total_commit.snapshot()
        assert list(users) == ["{alice}"]
        assert users["{alice}"].total == 1
        assert collector.repo_total_commit.snapshot() == {}

    def test_same_names_give_distinct_series(self, make_commit: MakeCommit) -> None:
        """Test two authors sharing nickname and display name are told apart by uuid."""
        collector = commit_collector()
        payloads = [make_commit("c0", "sam", "Sam"), make_commit("c1", "sam", "Sam")]
        payloads[1]["author"]["user"]["uuid"] = "{sam-2}"
        collector.add_user_commits(
            repo("api"), [Commit.model_validate(payload) for payload in payloads]
        )

        registry = scrape(collector)

        labels = {**REPO_LABELS, "user": "sam", "display_name": "Sam"}
        for uuid in ("{sam}", "{sam-2}"):
            sample = registry.get_sample_value(
                "bitbucket_member_total_commit", {**labels, "uuid": uuid}
            )
            assert sample == 1

    def test_concurrent_updates_lose_nothing(self, make_commit: MakeCommit) -> None:
        """Test concurrent writers from many threads give the exact total."""
        collector = commit_collector()
        page = self.commits(make_commit, *[("alice", "Alice")] * 50)

        def work() -> None:
            for _ in range(20):
                collector.add_user_commits(repo("api"), page)
                collector.add_repo_commits(repo("api"), len(page))

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert collector.user_total_commit.snapshot()["{alice}"].total == 8 * 20 * 50
        assert collector.repo_total_commit.snapshot()["{api}"].total == 8 * 20 * 50

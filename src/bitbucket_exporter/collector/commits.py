"""Commit collector: commit totals per repository and per author."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from bitbucket_exporter.bitbucket.models import Commit
from bitbucket_exporter.bitbucket.pagination import walk_pages
from bitbucket_exporter.collector.base import ConfigError, RepositoryConsumer
from bitbucket_exporter.collector.constants import (
    KEY_COMMIT_COLLECTOR,
    NAMESPACE,
    REPOSITORY_COMMITS_ENDPOINT,
    SUBSYSTEM_COMMIT,
    SUBSYSTEM_MEMBER,
    build_fq_name,
)
from bitbucket_exporter.collector.holder import DataHolder

if TYPE_CHECKING:
    from bitbucket_exporter.bitbucket.http import BitbucketClient
    from bitbucket_exporter.bitbucket.models import Repository
    from bitbucket_exporter.collector.channel import RepositoryChannel
    from bitbucket_exporter.config import CommitCollectorConfig

logger = logging.getLogger(__name__)

REPO_COMMIT_LABELS = ["workspace", "project", "repository"]
USER_COMMIT_LABELS = ["workspace", "project", "repository", "user", "display_name", "uuid"]


@dataclass
class RepoCommitData:
    workspace: str
    project: str
    repository: str
    total: int = 0


@dataclass
class UserCommitData:
    """Commit count of one author.

    The count is kept per repository so a repository walked again in a later
    cycle replaces its own contribution instead of adding to it.
    """

    workspace: str
    project: str
    repository: str
    nickname: str
    display_name: str
    by_repository: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_repository.values())


class CommitCollector(RepositoryConsumer):
    """Walks the full commit history of every admitted repository.

    Totals grow page by page, so a walk that fails midway leaves the counts
    of the pages already consumed.
    """

    name = KEY_COMMIT_COLLECTOR

    def __init__(self, config: CommitCollectorConfig | None, source: RepositoryChannel) -> None:
        super().__init__(source)
        self.config = config
        self.repo_total_commit: DataHolder[dict[str, RepoCommitData]] = DataHolder({})
        self.user_total_commit: DataHolder[dict[str, UserCommitData]] = DataHolder({})

    @property
    def included_repositories(self) -> list[str] | None:
        return self.config.included_repositories if self.config else None

    def has_work(self) -> bool:
        return self.config is not None and (
            self.config.collect_total_commit_repo or self.config.collect_total_commit_user
        )

    async def process(self, client: BitbucketClient, repo: Repository) -> None:
        config = self.config
        if config is None:
            raise ConfigError(f"{self.name} collector: config missing")

        self.reset_repository(repo)
        endpoint = REPOSITORY_COMMITS_ENDPOINT.format(
            workspace=repo.workspace_slug, repo_slug=repo.slug
        )

        pages = 0
        async for page in walk_pages(client, endpoint, Commit):
            pages += 1
            if not page.values:
                continue
            if config.collect_total_commit_repo:
                self.add_repo_commits(repo, len(page.values))
            if config.collect_total_commit_user:
                self.add_user_commits(repo, page.values, config.author_fields)

        logger.debug("Walked %d commit pages for %s", pages, repo.path)

    def reset_repository(self, repo: Repository) -> None:
        """Forget what a previous cycle counted for ``repo``."""
        with self.repo_total_commit.locked() as repos:
            repos.pop(repo.key, None)

        with self.user_total_commit.locked() as users:
            for uuid in list(users):
                entry = users[uuid]
                if entry.by_repository.pop(repo.key, None) is not None and not entry.by_repository:
                    del users[uuid]

    def add_repo_commits(self, repo: Repository, count: int) -> None:
        with self.repo_total_commit.locked() as repos:
            entry = repos.get(repo.key)
            if entry is None:
                entry = RepoCommitData(
                    workspace=repo.workspace_slug,
                    project=repo.project_key,
                    repository=repo.slug,
                )
                repos[repo.key] = entry
            entry.total += count

    def add_user_commits(
        self,
        repo: Repository,
        commits: Sequence[Commit],
        author_fields: str = "last",
    ) -> None:
        """Count each commit once for its author.

        Commits whose author is not linked to a Bitbucket user are skipped.

        Args:
            repo: Repository the commits belong to.
            commits: Commits of one page.
            author_fields: ``last`` lets the most recent commit set the
                author's repository and names, ``first`` keeps the first seen.
        """
        for commit in commits:
            user = commit.author.user
            if user is None or not user.uuid:
                continue

            with self.user_total_commit.locked() as users:
                entry = users.get(user.uuid)
                if entry is None:
                    entry = UserCommitData(
                        workspace=repo.workspace_slug,
                        project=repo.project_key,
                        repository=repo.slug,
                        nickname=user.nickname,
                        display_name=user.display_name,
                    )
                    users[user.uuid] = entry
                elif author_fields == "last":
                    entry.workspace = repo.workspace_slug
                    entry.project = repo.project_key
                    entry.repository = repo.slug
                    entry.nickname = user.nickname
                    entry.display_name = user.display_name
                entry.by_repository[repo.key] = entry.by_repository.get(repo.key, 0) + 1

    def _families(self) -> dict[str, GaugeMetricFamily]:
        return {
            "repo": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_COMMIT, "total"),
                "Total commit of this repo",
                labels=REPO_COMMIT_LABELS,
            ),
            "user": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_MEMBER, "total_commit"),
                "Total commit user",
                labels=USER_COMMIT_LABELS,
            ),
        }

    def collect(self) -> Iterable[Metric]:
        families = self._families()
        with self.repo_total_commit.locked() as repos:
            for repo_entry in repos.values():
                families["repo"].add_metric(
                    [repo_entry.workspace, repo_entry.project, repo_entry.repository],
                    repo_entry.total,
                )

        with self.user_total_commit.locked() as users:
            for uuid, user_entry in users.items():
                families["user"].add_metric(
                    [
                        user_entry.workspace,
                        user_entry.project,
                        user_entry.repository,
                        user_entry.nickname,
                        user_entry.display_name,
                        uuid,
                    ],
                    user_entry.total,
                )
        return list(families.values())

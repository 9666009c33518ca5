"""Repositories collector.

Walks the repository listing of every configured workspace, keeps the
decoded repositories for the info/size/timestamp gauges, and feeds them to
the refs and commit collectors.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from bitbucket_exporter.bitbucket.models import Repository
from bitbucket_exporter.bitbucket.pagination import walk_pages
from bitbucket_exporter.collector.base import SubCollector
from bitbucket_exporter.collector.constants import (
    KEY_REPOSITORIES_COLLECTOR,
    NAMESPACE,
    REPOSITORIES_ENDPOINT,
    SUBSYSTEM_REPOSITORIES,
    bool_label,
    build_fq_name,
)
from bitbucket_exporter.collector.holder import DataHolder

if TYPE_CHECKING:
    from datetime import datetime

    from bitbucket_exporter.bitbucket.http import BitbucketClient
    from bitbucket_exporter.collector.channel import RepositoryChannel

logger = logging.getLogger(__name__)

REPO_LABELS = [
    "workspace",
    "project",
    "name",
    "language",
    "has_issues",
    "has_wiki",
    "is_private",
]

LIST_PARAMS = {"role": "member", "sort": "-created_on"}


class RepositoriesCollector(SubCollector):
    """Producer of the collection pipeline.

    Every repository of a page is stored and sent to all output channels
    before the next page is requested. The outputs are closed exactly once
    when the walk ends, whether it completed, failed or was cancelled.
    """

    name = KEY_REPOSITORIES_COLLECTOR
    PAGE_INTERVAL = 1.0

    def __init__(
        self,
        workspaces: Sequence[str],
        outputs: Sequence[RepositoryChannel] = (),
        page_interval: float = PAGE_INTERVAL,
        stop_on_empty_page: bool = False,
    ) -> None:
        """Initialize the repositories collector.

        Args:
            workspaces: Workspace slugs to enumerate.
            outputs: Channels every discovered repository is sent to.
            page_interval: Pause in seconds between two page requests.
            stop_on_empty_page: Stop a workspace walk at the first page
                without values instead of relying on the next link only.
        """
        self.workspaces = list(workspaces)
        self._outputs = list(outputs)
        self.page_interval = page_interval
        self.stop_on_empty_page = stop_on_empty_page
        # Keyed by repository uuid so a new cycle replaces, not duplicates.
        self.holder: DataHolder[dict[str, Repository]] = DataHolder({})

    async def exec(self, client: BitbucketClient) -> None:
        try:
            for workspace in self.workspaces:
                await self._walk_workspace(client, workspace)
        finally:
            for channel in self._outputs:
                await channel.close()

    async def _walk_workspace(self, client: BitbucketClient, workspace: str) -> None:
        endpoint = REPOSITORIES_ENDPOINT.format(workspace=workspace)
        discovered = 0

        async for page in walk_pages(
            client,
            endpoint,
            Repository,
            LIST_PARAMS,
            stop_on_empty=self.stop_on_empty_page,
            page_interval=self.page_interval,
        ):
            if page.values:
                with self.holder.locked() as repos:
                    for repo in page.values:
                        repos[repo.key] = repo

            for repo in page.values:
                for channel in self._outputs:
                    await channel.put(repo)
            discovered += len(page.values)

        logger.info("Discovered %d repositories in workspace %s", discovered, workspace)

    def _families(self) -> dict[str, GaugeMetricFamily]:
        return {
            "info": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_REPOSITORIES, "info"),
                "Information about a Bitbucket repo",
                labels=REPO_LABELS,
            ),
            "created_on": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_REPOSITORIES, "created_on"),
                "Timestamp of creation of repo",
                labels=REPO_LABELS,
            ),
            "updated_on": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_REPOSITORIES, "updated_on"),
                "Timestamp of the last modification of repo",
                labels=REPO_LABELS,
            ),
            "size": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_REPOSITORIES, "size"),
                "Size of repo in bytes",
                labels=REPO_LABELS,
            ),
        }

    def collect(self) -> Iterable[Metric]:
        families = self._families()
        with self.holder.locked() as repos:
            for repo in repos.values():
                labels = [
                    repo.workspace_slug,
                    repo.project_key,
                    repo.slug,
                    repo.language,
                    bool_label(repo.has_issues),
                    bool_label(repo.has_wiki),
                    bool_label(repo.is_private),
                ]
                families["info"].add_metric(labels, 1)
                families["created_on"].add_metric(labels, _timestamp(repo.created_on))
                families["updated_on"].add_metric(labels, _timestamp(repo.updated_on))
                families["size"].add_metric(labels, repo.size)
        return list(families.values())


def _timestamp(value: datetime | None) -> float:
    return value.timestamp() if value is not None else 0.0

"""Refs collector: branch and tag totals per repository."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from bitbucket_exporter.bitbucket.exceptions import DecodeError
from bitbucket_exporter.bitbucket.models import Ref
from bitbucket_exporter.collector.base import ConfigError, RepositoryConsumer
from bitbucket_exporter.collector.constants import (
    KEY_REFS_COLLECTOR,
    NAMESPACE,
    REPOSITORY_REFS_ENDPOINT,
    SUBSYSTEM_REPO_REFS,
    build_fq_name,
)
from bitbucket_exporter.collector.holder import DataHolder

if TYPE_CHECKING:
    from bitbucket_exporter.bitbucket.http import BitbucketClient
    from bitbucket_exporter.bitbucket.models import Repository
    from bitbucket_exporter.collector.channel import RepositoryChannel
    from bitbucket_exporter.config import RefsCollectorConfig

logger = logging.getLogger(__name__)

REFS_LABELS = ["workspace", "project", "repository"]


@dataclass(frozen=True)
class RefsData:
    workspace: str
    project: str
    repository: str
    total: int


class RefsCollector(RepositoryConsumer):
    """Counts branches and tags of every admitted repository.

    Each count is a single request reading the envelope's ``size``; pages
    are never walked.
    """

    name = KEY_REFS_COLLECTOR

    def __init__(self, config: RefsCollectorConfig | None, source: RepositoryChannel) -> None:
        super().__init__(source)
        self.config = config
        # Keyed by repository uuid, one entry per repository per ref kind.
        self.total_tags: DataHolder[dict[str, RefsData]] = DataHolder({})
        self.total_branches: DataHolder[dict[str, RefsData]] = DataHolder({})

    @property
    def included_repositories(self) -> list[str] | None:
        return self.config.included_repositories if self.config else None

    def has_work(self) -> bool:
        return self.config is not None and (
            self.config.collect_total_branch or self.config.collect_total_tag
        )

    async def process(self, client: BitbucketClient, repo: Repository) -> None:
        config = self.config
        if config is None:
            raise ConfigError(f"{self.name} collector: config missing")

        counts = []
        if config.collect_total_tag:
            counts.append(self._count_refs(client, repo, "tag", self.total_tags))
        if config.collect_total_branch:
            counts.append(self._count_refs(client, repo, "branch", self.total_branches))

        results = await asyncio.gather(*counts, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _count_refs(
        self,
        client: BitbucketClient,
        repo: Repository,
        ref_type: str,
        holder: DataHolder[dict[str, RefsData]],
    ) -> None:
        endpoint = REPOSITORY_REFS_ENDPOINT.format(
            workspace=repo.workspace_slug, repo_slug=repo.slug
        )
        page = await client.get_page(endpoint, Ref, {"q": f'type="{ref_type}"'})
        if page.size is None:
            raise DecodeError(f"{endpoint} response has no size for {ref_type} refs")

        entry = RefsData(
            workspace=repo.workspace_slug,
            project=repo.project_key,
            repository=repo.slug,
            total=page.size,
        )
        with holder.locked() as data:
            data[repo.key] = entry
        logger.debug("%s has %d %s refs", repo.path, page.size, ref_type)

    def _families(self) -> dict[str, GaugeMetricFamily]:
        return {
            "branch": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_REPO_REFS, "total_branch"),
                "Total branch of this repo",
                labels=REFS_LABELS,
            ),
            "tag": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_REPO_REFS, "total_tag"),
                "Total tag of this repo",
                labels=REFS_LABELS,
            ),
        }

    def collect(self) -> Iterable[Metric]:
        families = self._families()
        for key, holder in (("branch", self.total_branches), ("tag", self.total_tags)):
            with holder.locked() as data:
                for entry in data.values():
                    families[key].add_metric(
                        [entry.workspace, entry.project, entry.repository], entry.total
                    )
        return list(families.values())

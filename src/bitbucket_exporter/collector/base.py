"""Sub-collector contract and the shared repository-consumer loop."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from bitbucket_exporter.bitbucket.exceptions import BitbucketError
from bitbucket_exporter.config import WILDCARD

if TYPE_CHECKING:
    from bitbucket_exporter.bitbucket.http import BitbucketClient
    from bitbucket_exporter.bitbucket.models import Repository
    from bitbucket_exporter.collector.channel import RepositoryChannel

logger = logging.getLogger(__name__)


class ConfigError(BitbucketError):
    """Raised when a sub-collector has no configuration at all."""


def repository_included(repo: Repository, included: Sequence[str]) -> bool:
    """Check a repository against an inclusion list.

    ``["*"]`` admits every repository. Any other list admits exactly the
    repositories whose ``workspace/slug`` is listed.
    """
    if len(included) == 1 and included[0] == WILDCARD:
        return True
    return repo.path in included


class SubCollector(ABC):
    """An independently scheduled unit of ingestion plus its metric families.

    ``exec`` runs in the background and fills the collector's holders.
    ``collect`` runs on scrape and only reads them.
    """

    name: str

    @abstractmethod
    async def exec(self, client: BitbucketClient) -> None:
        """Run one ingestion cycle."""

    @abstractmethod
    def collect(self) -> Iterable[Metric]:
        """Emit current holder contents as metric families."""

    def describe(self) -> Iterable[Metric]:
        """Emit the metric families without samples."""
        return list(self._families().values())

    @abstractmethod
    def _families(self) -> dict[str, GaugeMetricFamily]:
        """Build fresh, empty metric families keyed by a short name."""


class RepositoryConsumer(SubCollector):
    """Base for collectors fed by the repositories collector.

    Reads the channel until it is closed, filters each repository through
    the configured inclusion list and starts one task per admitted
    repository. All tasks are awaited before ``exec`` returns. A failed
    repository does not stop the others; the first failure is raised once
    every task has finished.
    """

    def __init__(self, source: RepositoryChannel) -> None:
        self._source = source

    @property
    @abstractmethod
    def included_repositories(self) -> list[str] | None:
        """Inclusion list, or None when the collector is not configured."""

    @abstractmethod
    def has_work(self) -> bool:
        """Whether at least one toggle asks for data."""

    @abstractmethod
    async def process(self, client: BitbucketClient, repo: Repository) -> None:
        """Collect data for one admitted repository."""

    async def exec(self, client: BitbucketClient) -> None:
        tasks: set[asyncio.Task[None]] = set()
        try:
            await self._dispatch(client, tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        finally:
            self._source.abandon()
            results = await asyncio.gather(*tasks, return_exceptions=True) if tasks else []

        failures = [r for r in results if isinstance(r, Exception)]
        if failures:
            logger.error(
                "%s: %d of %d repositories failed", self.name, len(failures), len(results)
            )
            raise failures[0]

    async def _dispatch(self, client: BitbucketClient, tasks: set[asyncio.Task[None]]) -> None:
        included = self.included_repositories
        active = bool(included) and self.has_work()
        if included is not None and not active:
            logger.debug("%s: nothing to collect, draining repositories", self.name)

        while True:
            repo = await self._source.get()
            if repo is None:
                break
            # Without a config only a received repository is an error.
            if included is None:
                raise ConfigError(f"{self.name} collector: config missing")
            if not active or not repository_included(repo, included):
                continue
            tasks.add(asyncio.create_task(self._process_logged(client, repo)))

    async def _process_logged(self, client: BitbucketClient, repo: Repository) -> None:
        try:
            await self.process(client, repo)
        except Exception as e:
            logger.warning("%s: collection for %s failed: %s", self.name, repo.path, e)
            raise

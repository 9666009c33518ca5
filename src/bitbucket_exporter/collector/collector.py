"""Collection orchestrator and scrape entry point.

``BitbucketCollector`` wires the sub-collectors together, runs one
collection cycle with all of them concurrently, and implements the
``prometheus_client`` custom collector protocol for the scrape path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from bitbucket_exporter.collector.channel import RepositoryChannel
from bitbucket_exporter.collector.commits import CommitCollector
from bitbucket_exporter.collector.constants import (
    KEY_COMMIT_COLLECTOR,
    KEY_REFS_COLLECTOR,
    NAMESPACE,
    SUBSYSTEM_SCRAPE,
    build_fq_name,
)
from bitbucket_exporter.collector.holder import DataHolder
from bitbucket_exporter.collector.members import MemberCollector
from bitbucket_exporter.collector.refs import RefsCollector
from bitbucket_exporter.collector.repositories import RepositoriesCollector

if TYPE_CHECKING:
    from bitbucket_exporter.bitbucket.http import BitbucketClient
    from bitbucket_exporter.collector.base import SubCollector
    from bitbucket_exporter.config import Config

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle of one sub-collector run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ScrapeResult:
    """Outcome of the latest run of a sub-collector.

    ``duration_seconds`` and ``success`` describe the last finished run and
    are kept while a new run is in progress.
    """

    state: RunState = RunState.IDLE
    duration_seconds: float | None = None
    success: bool = False
    error: str | None = None


class BitbucketCollector:
    """Runs all sub-collectors and serves their metrics on scrape.

    Scrapes never touch the network; they only read what the latest cycles
    left in the holders.
    """

    def __init__(
        self,
        config: Config,
        page_interval: float | None = None,
        member_interval: float | None = None,
        channel_size: int = RepositoryChannel.DEFAULT_MAXSIZE,
    ) -> None:
        """Initialize the collector and its sub-collectors.

        Args:
            config: Exporter configuration.
            page_interval: Pause between repository listing pages, overrides
                ``collectors.repositories.page_interval_seconds``.
            member_interval: Minimum delay between workspace member requests,
                overrides ``collectors.member.request_interval_seconds``.
            channel_size: Buffer size of each repository channel.
        """
        self._page_interval = page_interval
        self._member_interval = member_interval
        self._refs_channel = RepositoryChannel(KEY_REFS_COLLECTOR, channel_size)
        self._commit_channel = RepositoryChannel(KEY_COMMIT_COLLECTOR, channel_size)

        self.repositories = RepositoriesCollector(
            config.included_workspaces,
            outputs=[self._refs_channel, self._commit_channel],
        )
        self.refs = RefsCollector(config.collectors.refs, self._refs_channel)
        self.commits = CommitCollector(config.collectors.commit, self._commit_channel)
        self.members = MemberCollector(config.included_workspaces)
        self.update_config(config)

        self.collectors: dict[str, SubCollector] = {
            c.name: c for c in (self.repositories, self.refs, self.commits, self.members)
        }
        self._results: DataHolder[dict[str, ScrapeResult]] = DataHolder(
            {name: ScrapeResult() for name in self.collectors}
        )
        self._cycle_lock = asyncio.Lock()

    def update_config(self, config: Config) -> None:
        """Apply a reloaded configuration from the next cycle on."""
        collectors = config.collectors
        self.repositories.workspaces = list(config.included_workspaces)
        self.repositories.stop_on_empty_page = collectors.repositories.stop_on_empty_page
        self.repositories.page_interval = (
            self._page_interval
            if self._page_interval is not None
            else collectors.repositories.page_interval_seconds
        )
        self.members.workspaces = list(config.included_workspaces)
        self.members.request_interval = (
            self._member_interval
            if self._member_interval is not None
            else collectors.member.request_interval_seconds
        )
        self.refs.config = collectors.refs
        self.commits.config = collectors.commit

    def results(self) -> dict[str, ScrapeResult]:
        """Latest result per sub-collector name."""
        return self._results.snapshot()

    async def run(self, client: BitbucketClient) -> dict[str, ScrapeResult]:
        """Run one collection cycle.

        All sub-collectors start together. A failing sub-collector is
        logged and recorded, never propagated, so the others keep running.

        Args:
            client: HTTP client shared by all sub-collectors.

        Returns:
            Result per sub-collector name.
        """
        async with self._cycle_lock:
            self._refs_channel.reopen()
            self._commit_channel.reopen()

            logger.info("Starting collection cycle with %d collectors", len(self.collectors))
            await asyncio.gather(
                *(self._execute(name, c, client) for name, c in self.collectors.items())
            )
            return self.results()

    async def _execute(self, name: str, collector: SubCollector, client: BitbucketClient) -> None:
        with self._results.locked() as results:
            results[name] = replace(results[name], state=RunState.RUNNING, error=None)

        begin = time.monotonic()
        error: Exception | None = None
        try:
            await collector.exec(client)
        except Exception as e:
            error = e
        duration = time.monotonic() - begin

        if error is not None:
            logger.error(
                "collector failed: name=%s duration_seconds=%.3f err=%s", name, duration, error
            )
            result = ScrapeResult(RunState.FAILED, duration, False, str(error))
        else:
            logger.debug("collector succeeded: name=%s duration_seconds=%.3f", name, duration)
            result = ScrapeResult(RunState.SUCCEEDED, duration, True)

        with self._results.locked() as results:
            results[name] = result

    def _families(self) -> dict[str, GaugeMetricFamily]:
        return {
            "duration": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_SCRAPE, "collector_duration_seconds"),
                "bitbucket_exporter: Duration of a collector scrape.",
                labels=["collector"],
            ),
            "success": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_SCRAPE, "collector_success"),
                "bitbucket_exporter: Whether a collector succeeded.",
                labels=["collector"],
            ),
        }

    def describe(self) -> Iterable[Metric]:
        """Implements the prometheus_client collector protocol."""
        for collector in self.collectors.values():
            yield from collector.describe()
        yield from self._families().values()

    def collect(self) -> Iterable[Metric]:
        """Implements the prometheus_client collector protocol."""
        for collector in self.collectors.values():
            yield from collector.collect()

        families = self._families()
        with self._results.locked() as results:
            for name, result in results.items():
                if result.duration_seconds is None:
                    continue
                families["duration"].add_metric([name], result.duration_seconds)
                families["success"].add_metric([name], 1.0 if result.success else 0.0)
        yield from families.values()

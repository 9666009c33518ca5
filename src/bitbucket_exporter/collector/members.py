"""Member collector: member count per workspace."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from bitbucket_exporter.bitbucket.exceptions import DecodeError
from bitbucket_exporter.collector.base import SubCollector
from bitbucket_exporter.collector.constants import (
    KEY_MEMBER_COLLECTOR,
    NAMESPACE,
    SUBSYSTEM_MEMBER,
    WORKSPACE_MEMBERS_ENDPOINT,
    build_fq_name,
)
from bitbucket_exporter.collector.holder import DataHolder

if TYPE_CHECKING:
    from bitbucket_exporter.bitbucket.http import BitbucketClient

logger = logging.getLogger(__name__)


class MemberCollector(SubCollector):
    """Reads the member total of each workspace from one request.

    Consecutive workspace requests are at least ``request_interval`` seconds
    apart.
    """

    name = KEY_MEMBER_COLLECTOR
    REQUEST_INTERVAL = 5.0

    def __init__(
        self,
        workspaces: Sequence[str],
        request_interval: float = REQUEST_INTERVAL,
    ) -> None:
        self.workspaces = list(workspaces)
        self.request_interval = request_interval
        self.holder: DataHolder[dict[str, int]] = DataHolder({})

    async def exec(self, client: BitbucketClient) -> None:
        last_request: float | None = None

        for workspace in self.workspaces:
            if last_request is not None:
                remaining = self.request_interval - (time.monotonic() - last_request)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            last_request = time.monotonic()

            endpoint = WORKSPACE_MEMBERS_ENDPOINT.format(workspace=workspace)
            page = await client.get_page(endpoint, dict)
            if page.size is None:
                raise DecodeError(f"{endpoint} response has no size")

            with self.holder.locked() as members:
                members[workspace] = page.size
            logger.debug("Workspace %s has %d members", workspace, page.size)

    def _families(self) -> dict[str, GaugeMetricFamily]:
        return {
            "total": GaugeMetricFamily(
                build_fq_name(NAMESPACE, SUBSYSTEM_MEMBER, "total"),
                "Total of member inside the workspace",
                labels=["workspace"],
            ),
        }

    def collect(self) -> Iterable[Metric]:
        families = self._families()
        with self.holder.locked() as members:
            for workspace, total in members.items():
                families["total"].add_metric([workspace], total)
        return list(families.values())

"""Collection pipeline: sub-collectors, their holders and the orchestrator."""

from bitbucket_exporter.collector.base import (
    ConfigError,
    RepositoryConsumer,
    SubCollector,
    repository_included,
)
from bitbucket_exporter.collector.channel import RepositoryChannel
from bitbucket_exporter.collector.collector import BitbucketCollector, RunState, ScrapeResult
from bitbucket_exporter.collector.commits import CommitCollector, RepoCommitData, UserCommitData
from bitbucket_exporter.collector.holder import DataHolder
from bitbucket_exporter.collector.members import MemberCollector
from bitbucket_exporter.collector.refs import RefsCollector, RefsData
from bitbucket_exporter.collector.repositories import RepositoriesCollector

__all__ = [
    "BitbucketCollector",
    "CommitCollector",
    "ConfigError",
    "DataHolder",
    "MemberCollector",
    "RefsCollector",
    "RefsData",
    "RepoCommitData",
    "RepositoriesCollector",
    "RepositoryChannel",
    "RepositoryConsumer",
    "RunState",
    "ScrapeResult",
    "SubCollector",
    "UserCommitData",
    "repository_included",
]

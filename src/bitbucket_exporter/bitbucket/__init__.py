"""Bitbucket API client and utilities."""

from bitbucket_exporter.bitbucket.auth import BitbucketAuth
from bitbucket_exporter.bitbucket.exceptions import (
    AuthenticationError,
    BitbucketError,
    DecodeError,
    PaginationError,
    TransportError,
)
from bitbucket_exporter.bitbucket.http import BitbucketClient
from bitbucket_exporter.bitbucket.models import (
    Commit,
    Page,
    Project,
    Ref,
    Repository,
    User,
    Workspace,
)
from bitbucket_exporter.bitbucket.pagination import next_page_number, walk_pages

__all__ = [
    # Errors
    "AuthenticationError",
    # Auth
    "BitbucketAuth",
    # HTTP Client
    "BitbucketClient",
    "BitbucketError",
    # Models
    "Commit",
    "DecodeError",
    "Page",
    "PaginationError",
    "Project",
    "Ref",
    "Repository",
    "TransportError",
    "User",
    "Workspace",
    # Pagination
    "next_page_number",
    "walk_pages",
]

"""Metric names, collector keys and API endpoints."""

NAMESPACE = "bitbucket"

# Metric subsystems
SUBSYSTEM_REPOSITORIES = "repositories"
SUBSYSTEM_MEMBER = "member"
SUBSYSTEM_REPO_REFS = "repository_refs"
SUBSYSTEM_COMMIT = "commit"
SUBSYSTEM_SCRAPE = "scrape"

# Sub-collector names, used as the `collector` label of scrape metrics
KEY_REPOSITORIES_COLLECTOR = "repositories"
KEY_MEMBER_COLLECTOR = "member"
KEY_REFS_COLLECTOR = "refs"
KEY_COMMIT_COLLECTOR = "commit"

# Endpoints, relative to the API base URL
REPOSITORIES_ENDPOINT = "repositories/{workspace}"
WORKSPACE_MEMBERS_ENDPOINT = "workspaces/{workspace}/members"
REPOSITORY_REFS_ENDPOINT = "repositories/{workspace}/{repo_slug}/refs"
REPOSITORY_COMMITS_ENDPOINT = "repositories/{workspace}/{repo_slug}/commits"


def build_fq_name(*parts: str) -> str:
    """Join non-empty name parts with underscores."""
    return "_".join(part for part in parts if part)


def bool_label(value: bool) -> str:
    return "true" if value else "false"

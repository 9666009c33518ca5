"""Configuration loading and validation."""

import logging
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

WILDCARD = "*"


class StrictModel(BaseModel):
    """Base model rejecting unknown keys."""

    model_config = ConfigDict(extra="forbid")


class BasicAuthConfig(StrictModel):
    """Credentials for HTTP basic auth (username + app password)."""

    username: str = ""
    password: str | None = None
    password_env: str = "BITBUCKET_APP_PASSWORD"


class OAuth2Config(StrictModel):
    """OAuth2 consumer credentials. Accepted but not used for requests yet."""

    client_id: str = ""
    client_secret: str | None = None


class AuthConfig(StrictModel):
    """Bitbucket authentication configuration."""

    type: str = Field(default="basic", pattern=r"^(basic|oauth2)$")
    basic: BasicAuthConfig = Field(default_factory=BasicAuthConfig)
    oauth2: OAuth2Config | None = None


def _validate_repository_list(v: list[str]) -> list[str]:
    for entry in v:
        if entry == WILDCARD:
            continue
        workspace, sep, slug = entry.partition("/")
        if not sep or not workspace or not slug:
            msg = f"Invalid repository '{entry}': expected 'workspace/repo-slug' or '*'"
            raise ValueError(msg)
    return v


class RefsCollectorConfig(StrictModel):
    """Refs (branches/tags) collector configuration."""

    included_repositories: list[str] = Field(default_factory=list)
    collect_total_branch: bool = True
    collect_total_tag: bool = True

    @field_validator("included_repositories")
    @classmethod
    def validate_repositories(cls, v: list[str]) -> list[str]:
        """Validate that entries are 'workspace/slug' strings or the wildcard."""
        return _validate_repository_list(v)


class CommitCollectorConfig(StrictModel):
    """Commit collector configuration."""

    included_repositories: list[str] = Field(default_factory=list)
    collect_total_commit_repo: bool = True
    collect_total_commit_user: bool = True
    # Which commit wins for a user's descriptive labels (repository, names).
    author_fields: str = Field(default="last", pattern=r"^(last|first)$")

    @field_validator("included_repositories")
    @classmethod
    def validate_repositories(cls, v: list[str]) -> list[str]:
        """Validate that entries are 'workspace/slug' strings or the wildcard."""
        return _validate_repository_list(v)


class RepositoriesCollectorConfig(StrictModel):
    """Repository listing configuration."""

    page_interval_seconds: float = Field(default=1.0, ge=0)
    stop_on_empty_page: bool = False


class MemberCollectorConfig(StrictModel):
    """Workspace member collector configuration."""

    request_interval_seconds: float = Field(default=5.0, ge=0)


class CollectorsConfig(StrictModel):
    """Per sub-collector configuration.

    A missing refs or commit section is reported as a failed collection for
    that collector. The repositories and member sections are optional.
    """

    repositories: RepositoriesCollectorConfig = Field(default_factory=RepositoriesCollectorConfig)
    member: MemberCollectorConfig = Field(default_factory=MemberCollectorConfig)
    refs: RefsCollectorConfig | None = None
    commit: CommitCollectorConfig | None = None


class Config(StrictModel):
    """Root configuration model."""

    auth: AuthConfig = Field(default_factory=AuthConfig)
    included_workspaces: list[str] = Field(default_factory=list)
    collectors: CollectorsConfig = Field(default_factory=CollectorsConfig)


def load_config(path: Path) -> Config:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValidationError: If the config is invalid.
    """
    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open() as f:
        raw_config: dict[str, Any] | None = yaml.safe_load(f)

    return Config.model_validate(raw_config or {})


class ConfigHandler:
    """Holds the active configuration and swaps it atomically on reload."""

    def __init__(self, config: Config | None = None) -> None:
        self._lock = threading.RLock()
        self._config = config or Config()

    @property
    def config(self) -> Config:
        """Get the active configuration."""
        with self._lock:
            return self._config

    def reload_config(self, path: Path) -> Config:
        """Load `path` and make it the active configuration.

        The previous configuration stays active when loading fails.

        Raises:
            FileNotFoundError: If the config file doesn't exist.
            ValidationError: If the config is invalid.
        """
        config = load_config(path)
        with self._lock:
            self._config = config
        logger.info("Loaded configuration from %s", path)
        return config

"""Response models for the Bitbucket 2.0 API.

Only the fields the exporter aggregates are modeled; everything else in a
response is ignored. Models are frozen so decoded values can be handed to
several consumers without aliasing hazards.
"""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class FrozenModel(BaseModel):
    """Immutable model ignoring unknown response fields."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class Workspace(FrozenModel):
    slug: str = ""
    uuid: str = ""
    name: str = ""


class Project(FrozenModel):
    key: str = ""
    uuid: str = ""
    name: str = ""


class Repository(FrozenModel):
    """A repository as returned by ``GET /repositories/{workspace}``."""

    uuid: str = ""
    slug: str = ""
    name: str = ""
    full_name: str = ""
    language: str = ""
    size: int = 0
    is_private: bool = False
    has_issues: bool = False
    has_wiki: bool = False
    created_on: datetime | None = None
    updated_on: datetime | None = None
    workspace: Workspace = Field(default_factory=Workspace)
    project: Project | None = None

    @property
    def workspace_slug(self) -> str:
        return self.workspace.slug

    @property
    def project_key(self) -> str:
        """Project key, empty for repositories outside a project."""
        return self.project.key if self.project else ""

    @property
    def path(self) -> str:
        """``workspace/repo-slug`` form used by inclusion lists and endpoints."""
        return f"{self.workspace.slug}/{self.slug}"

    @property
    def key(self) -> str:
        """Stable identity, the uuid when the API provides one."""
        return self.uuid or self.path


class Ref(FrozenModel):
    name: str = ""
    type: str = ""


class User(FrozenModel):
    uuid: str = ""
    nickname: str = ""
    display_name: str = ""


class Author(FrozenModel):
    raw: str = ""
    # Absent when the commit author is not linked to a Bitbucket account.
    user: User | None = None


class Commit(FrozenModel):
    hash: str = ""
    author: Author = Field(default_factory=Author)


class Page(FrozenModel, Generic[T]):
    """Generic paginated envelope."""

    pagelen: int = 0
    next: str | None = None
    values: list[T] = Field(default_factory=list)
    size: int | None = None
    page: int | None = None

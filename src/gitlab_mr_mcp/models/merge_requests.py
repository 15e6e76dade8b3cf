"""Merge request models."""

from __future__ import annotations

from pydantic import Field

from .approvals import ApprovalInfo
from .base import GitLabModel
from .common import Diff, User
from .pipelines import Pipeline


class Commit(GitLabModel):
    id: str
    sha: str = ""
    title: str = ""
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    authored_date: str = ""
    committed_date: str = ""
    web_url: str = ""


class NotePosition(GitLabModel):
    old_line: int | None = None
    new_line: int | None = None
    old_path: str | None = None
    new_path: str | None = None


class Note(GitLabModel):
    id: str
    body: str = ""
    author: User
    created_at: str = ""
    updated_at: str = ""
    resolvable: bool = False
    resolved: bool | None = None
    position: NotePosition | None = None


class Discussion(GitLabModel):
    id: str
    resolved: bool = False
    resolvable: bool = False
    notes: list[Note] = []


class MergeRequestView(GitLabModel):
    """Canonical, transport-agnostic view of one merge request.

    The four collections are always present. An empty ``diffs`` list or a
    default ``approvals`` record means the data was not fetched, not that the
    merge request has none.
    """

    id: str
    iid: str
    title: str = ""
    description: str | None = None
    state: str = ""
    author: User
    assignees: list[User] = []
    reviewers: list[User] = []
    labels: list[str] = []
    source_branch: str = ""
    target_branch: str = ""
    web_url: str = ""
    created_at: str = ""
    updated_at: str = ""
    merged_at: str | None = None
    changes_count: str | None = None
    commits: list[Commit] = []
    pipelines: list[Pipeline] = []
    approvals: ApprovalInfo = Field(default_factory=ApprovalInfo)
    diffs: list[Diff] = []
    discussions: list[Discussion] = []


class MergeRequestSummary(GitLabModel):
    """One row of a merge request listing."""

    id: str
    iid: str
    project_id: str
    title: str = ""
    state: str = ""
    author: User | None = None
    labels: list[str] = []
    source_branch: str = ""
    target_branch: str = ""
    web_url: str = ""
    created_at: str = ""
    updated_at: str = ""
    merged_at: str | None = None
    draft: bool = False

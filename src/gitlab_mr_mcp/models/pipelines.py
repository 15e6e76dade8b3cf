"""Pipeline and job models."""

from __future__ import annotations

from .base import GitLabModel


class DetailedStatus(GitLabModel):
    group: str | None = None
    icon: str | None = None
    label: str | None = None
    tooltip: str | None = None
    has_details: bool | None = None
    details_path: str | None = None


class Pipeline(GitLabModel):
    id: str
    status: str = ""
    ref: str = ""
    sha: str = ""
    web_url: str = ""
    created_at: str = ""
    updated_at: str = ""
    duration: float | None = None
    coverage: str | None = None
    source: str | None = None
    detailed_status: DetailedStatus | None = None


class JobArtifact(GitLabModel):
    filename: str
    size: int | None = None


class JobRunner(GitLabModel):
    id: str
    description: str | None = None


class Job(GitLabModel):
    id: str
    name: str = ""
    stage: str = ""
    status: str = ""
    allow_failure: bool | None = None
    web_url: str = ""
    created_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    duration: float | None = None
    coverage: str | None = None
    artifacts: JobArtifact | None = None
    runner: JobRunner | None = None

"""Common GitLab models shared across domains."""

from __future__ import annotations

from .base import GitLabModel


class User(GitLabModel):
    id: str
    username: str = ""
    name: str = ""
    avatar_url: str | None = None
    web_url: str = ""


class Diff(GitLabModel):
    old_path: str = ""
    new_path: str = ""
    a_mode: str | None = None
    b_mode: str | None = None
    diff: str = ""
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False


class HealthStatus(GitLabModel):
    reachable: bool
    version: str = "unknown"
    error: str | None = None

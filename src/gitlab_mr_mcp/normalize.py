"""Map raw GraphQL and REST payloads onto the normalized models.

Nullable source fields become ``None`` (absent) rather than a zero value.
Collections GraphQL cannot supply are set to empty defaults so callers can
tell that REST enrichment is still needed.
"""

from __future__ import annotations

from typing import Any

from .exceptions import GitLabValidationError
from .models.approvals import ApprovalInfo
from .models.common import Diff, User
from .models.merge_requests import (
    Commit,
    Discussion,
    MergeRequestSummary,
    MergeRequestView,
    Note,
    NotePosition,
)
from .models.pipelines import DetailedStatus, Job, JobArtifact, JobRunner, Pipeline


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not connection:
        return []
    return connection.get("nodes") or []


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def normalize_user(raw: dict[str, Any]) -> User:
    return User(
        id=str(raw["id"]),
        username=raw.get("username") or "",
        name=raw.get("name") or "",
        avatar_url=raw.get("avatarUrl", raw.get("avatar_url")) or None,
        web_url=raw.get("webUrl", raw.get("web_url")) or "",
    )


def normalize_commit(raw: dict[str, Any]) -> Commit:
    return Commit(
        id=raw["id"],
        sha=raw.get("sha") or "",
        title=raw.get("title") or "",
        message=raw.get("message") or "",
        author_name=raw.get("authorName") or "",
        author_email=raw.get("authorEmail") or "",
        authored_date=raw.get("authoredDate") or "",
        committed_date=raw.get("committedDate") or "",
        web_url=raw.get("webUrl") or "",
    )


def normalize_pipeline(raw: dict[str, Any]) -> Pipeline:
    # GraphQL has no web URL for pipelines; REST enrichment supplies it.
    return Pipeline(
        id=str(raw["id"]),
        status=raw.get("status") or "",
        ref=raw.get("ref") or "",
        sha=raw.get("sha") or "",
        web_url="",
        created_at=raw.get("createdAt") or "",
        updated_at=raw.get("updatedAt") or "",
        duration=raw.get("duration"),
    )


def normalize_note(raw: dict[str, Any]) -> Note:
    position = raw.get("position")
    return Note(
        id=raw["id"],
        body=raw.get("body") or "",
        author=normalize_user(raw["author"]),
        created_at=raw.get("createdAt") or "",
        updated_at=raw.get("updatedAt") or "",
        resolvable=bool(raw.get("resolvable")),
        resolved=raw.get("resolved") or None,
        position=(
            NotePosition(
                old_line=position.get("oldLine"),
                new_line=position.get("newLine"),
                old_path=_str_or_none(position.get("oldPath")),
                new_path=_str_or_none(position.get("newPath")),
            )
            if position
            else None
        ),
    )


def normalize_discussion(raw: dict[str, Any]) -> Discussion:
    return Discussion(
        id=raw["id"],
        resolved=bool(raw.get("resolved")),
        resolvable=bool(raw.get("resolvable")),
        notes=[normalize_note(note) for note in _nodes(raw.get("notes"))],
    )


def merge_request_node(data: dict[str, Any] | None) -> dict[str, Any]:
    """Return the ``project.mergeRequest`` object or raise a validation error."""
    project = (data or {}).get("project")
    if not project or not project.get("mergeRequest"):
        msg = "Invalid MR data: project or mergeRequest is null"
        raise GitLabValidationError(msg)
    return project["mergeRequest"]


def normalize_merge_request(data: dict[str, Any] | None) -> MergeRequestView:
    """Build a :class:`MergeRequestView` from a GraphQL merge request payload."""
    mr = merge_request_node(data)
    try:
        return MergeRequestView(
            id=mr["id"],
            iid=str(mr["iid"]),
            title=mr.get("title") or "",
            description=mr.get("description") or None,
            state=mr.get("state") or "",
            author=normalize_user(mr["author"]),
            assignees=[normalize_user(u) for u in _nodes(mr.get("assignees"))],
            reviewers=[normalize_user(u) for u in _nodes(mr.get("reviewers"))],
            labels=[label["title"] for label in _nodes(mr.get("labels"))],
            source_branch=mr.get("sourceBranch") or "",
            target_branch=mr.get("targetBranch") or "",
            web_url=mr.get("webUrl") or "",
            created_at=mr.get("createdAt") or "",
            updated_at=mr.get("updatedAt") or "",
            merged_at=mr.get("mergedAt") or None,
            changes_count=None,
            commits=[normalize_commit(c) for c in _nodes(mr.get("commits"))],
            pipelines=[normalize_pipeline(p) for p in _nodes(mr.get("pipelines"))],
            approvals=ApprovalInfo(approved=bool(mr.get("approved"))),
            diffs=[],
            discussions=[normalize_discussion(d) for d in _nodes(mr.get("discussions"))],
        )
    except (KeyError, TypeError, ValueError) as e:
        msg = f"Invalid MR data: {e!r}"
        raise GitLabValidationError(msg) from e


# ── REST payloads ─────────────────────────────────────────────


def normalize_rest_diff(raw: dict[str, Any]) -> Diff:
    return Diff(
        old_path=raw.get("old_path") or "",
        new_path=raw.get("new_path") or "",
        a_mode=raw.get("a_mode") or None,
        b_mode=raw.get("b_mode") or None,
        diff=raw.get("diff") or "",
        new_file=bool(raw.get("new_file")),
        renamed_file=bool(raw.get("renamed_file")),
        deleted_file=bool(raw.get("deleted_file")),
    )


def normalize_rest_approvals(raw: dict[str, Any]) -> ApprovalInfo:
    return ApprovalInfo(
        approved=bool(raw.get("approved")),
        approved_by=[normalize_user(item["user"]) for item in raw.get("approved_by") or []],
        approvals_required=raw.get("approvals_required") or 0,
        approvals_left=raw.get("approvals_left") or 0,
    )


def normalize_rest_pipeline(raw: dict[str, Any]) -> Pipeline:
    status = raw.get("detailed_status")
    return Pipeline(
        id=str(raw["id"]),
        status=raw.get("status") or "",
        ref=raw.get("ref") or "",
        sha=raw.get("sha") or "",
        web_url=raw.get("web_url") or "",
        created_at=raw.get("created_at") or "",
        updated_at=raw.get("updated_at") or "",
        duration=raw.get("duration"),
        coverage=raw.get("coverage"),
        source=raw.get("source"),
        detailed_status=(
            DetailedStatus(
                group=status.get("group"),
                icon=status.get("icon"),
                label=status.get("text") or status.get("label"),
                tooltip=status.get("tooltip"),
                has_details=status.get("has_details"),
                details_path=status.get("details_path"),
            )
            if status
            else None
        ),
    )


def normalize_rest_job(raw: dict[str, Any]) -> Job:
    artifacts = raw.get("artifacts_file")
    runner = raw.get("runner")
    return Job(
        id=str(raw["id"]),
        name=raw.get("name") or "",
        stage=raw.get("stage") or "",
        status=raw.get("status") or "",
        allow_failure=raw.get("allow_failure"),
        web_url=raw.get("web_url") or "",
        created_at=raw.get("created_at") or None,
        started_at=raw.get("started_at") or None,
        finished_at=raw.get("finished_at") or None,
        duration=raw.get("duration"),
        coverage=raw.get("coverage"),
        artifacts=(
            JobArtifact(filename=artifacts["filename"], size=artifacts.get("size"))
            if artifacts and artifacts.get("filename")
            else None
        ),
        runner=(
            JobRunner(id=str(runner["id"]), description=runner.get("description") or None)
            if runner
            else None
        ),
    )


def normalize_rest_merge_request(raw: dict[str, Any]) -> MergeRequestSummary:
    author = raw.get("author")
    return MergeRequestSummary(
        id=str(raw["id"]),
        iid=str(raw["iid"]),
        project_id=str(raw.get("project_id") or ""),
        title=raw.get("title") or "",
        state=raw.get("state") or "",
        author=normalize_user(author) if author else None,
        labels=[str(label) for label in raw.get("labels") or []],
        source_branch=raw.get("source_branch") or "",
        target_branch=raw.get("target_branch") or "",
        web_url=raw.get("web_url") or "",
        created_at=raw.get("created_at") or "",
        updated_at=raw.get("updated_at") or "",
        merged_at=raw.get("merged_at") or None,
        draft=bool(raw.get("draft") or raw.get("work_in_progress")),
    )

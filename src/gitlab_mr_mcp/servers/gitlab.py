"""GitLab MR MCP server tool registrations."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any, Literal

from fastmcp import Context, FastMCP
from pydantic import Field

from ..cache import ViewCache
from ..client import GitLabClient
from ..config import GitLabConfig
from ..exceptions import ErrorKind, GitLabError
from ..views import MergeRequestService
from ._helpers import _fingerprint, _parse_gitlab_pipeline_url

_HINTS = {
    ErrorKind.AUTH_ERROR: "Check GITLAB_TOKEN permissions. Token needs 'read_api' or 'api' scope.",
    ErrorKind.NOT_FOUND: "Verify the project path and merge request IID.",
    ErrorKind.RATE_LIMIT: "Rate limited. Wait retry_after_seconds before retrying.",
    ErrorKind.NET_ERROR: "GitLab is unreachable. Check GITLAB_BASE_URL and network access.",
    ErrorKind.GRAPHQL_ERROR: "The GraphQL query was rejected. Check the GitLab version.",
}


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    config = GitLabConfig.from_env()
    config.validate()
    client = GitLabClient(config)
    cache = ViewCache(
        max_size=config.cache_max_size, ttl=config.cache_ttl, diff_ttl=config.diff_cache_ttl
    )
    try:
        yield {"service": MergeRequestService(client, cache), "config": config}
    finally:
        await client.close()


mcp = FastMCP(
    name="GitLab MR MCP Server",
    instructions=(
        "Read-only access to GitLab merge requests: a cached, normalized view plus "
        "commits, discussions, diffs, approvals and pipelines."
    ),
    lifespan=lifespan,
)


def _get_service(ctx: Context) -> MergeRequestService:
    return ctx.request_context.lifespan_context["service"]


def _ok(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _items(items: list) -> str:
    return _ok({"items": [item.to_dict() for item in items], "count": len(items)})


def _err(error: Exception) -> str:
    if isinstance(error, GitLabError):
        detail: dict[str, Any] = {"error": error.message, **error.to_record().to_dict()}
        if error.kind in _HINTS:
            detail["hint"] = _HINTS[error.kind]
    elif isinstance(error, ValueError):
        detail = {"error": str(error), "kind": ErrorKind.VALIDATION.value}
    else:
        detail = {"error": str(error), "kind": ErrorKind.UNKNOWN_ERROR.value}
    return _ok(detail)


_Project = Annotated[
    str,
    Field(
        description="Project full path (e.g. 'my-group/my-project') or a merge request URL",
        min_length=1,
    ),
]
_MrIid = Annotated[
    str | None, Field(description="Merge request IID (optional when project is an MR URL)")
]


# ════════════════════════════════════════════════════════════════════
# Merge requests
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"gitlab", "merge_requests", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_get_merge_request(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
    force_refresh: Annotated[bool, Field(description="Bypass the cache")] = False,
    include_diffs: Annotated[bool, Field(description="Load file diffs via REST")] = False,
    include_approvals: Annotated[
        bool, Field(description="Load approval details via REST")
    ] = False,
    commits_first: Annotated[int, Field(description="Commits page size", ge=1, le=100)] = 50,
    discussions_first: Annotated[
        int, Field(description="Discussions page size", ge=1, le=100)
    ] = 50,
) -> str:
    """Get the normalized view of a merge request.

    Returns identity, people, labels, branches, timestamps and the first page of
    commits, pipelines and discussions. Results are cached for a short time.
    """
    try:
        view = await _get_service(ctx).get_view(
            _fingerprint(project, mr_iid),
            force_refresh=force_refresh,
            include_diffs=include_diffs,
            include_approvals=include_approvals,
            commits_first=commits_first,
            discussions_first=discussions_first,
        )
        return _ok(view.to_dict())
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "merge_requests", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_list_mr_commits(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
    page_size: Annotated[int, Field(description="Commits per request", ge=1, le=100)] = 50,
) -> str:
    """List every commit of a merge request, following all pages."""
    try:
        commits = await _get_service(ctx).fetch_all_commits(
            _fingerprint(project, mr_iid), page_size
        )
        return _items(commits)
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "discussions", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_list_mr_discussions(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
    page_size: Annotated[int, Field(description="Discussions per request", ge=1, le=100)] = 50,
) -> str:
    """List every discussion thread of a merge request, following all pages."""
    try:
        discussions = await _get_service(ctx).fetch_all_discussions(
            _fingerprint(project, mr_iid), page_size
        )
        return _items(discussions)
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "merge_requests", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_get_mr_diffs(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
) -> str:
    """Get the file diffs of a merge request."""
    try:
        diffs = await _get_service(ctx).get_diffs(_fingerprint(project, mr_iid))
        return _items(diffs)
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "approvals", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_get_mr_approvals(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
) -> str:
    """Get approval state: approvers, approvals required and approvals left."""
    try:
        approvals = await _get_service(ctx).get_approvals(_fingerprint(project, mr_iid))
        return _ok(approvals.to_dict())
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "merge_requests", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_list_merge_requests_by_user(
    ctx: Context,
    username: Annotated[str, Field(description="GitLab username of the author", min_length=1)],
    project: Annotated[
        str | None,
        Field(description="Limit to one project full path; all accessible projects if omitted"),
    ] = None,
    state: Annotated[
        Literal["opened", "closed", "locked", "merged"] | None,
        Field(description="Merge request state filter"),
    ] = None,
) -> str:
    """List merge requests authored by a user, newest first as GitLab returns them."""
    try:
        mrs = await _get_service(ctx).list_merge_requests_by_user(username, project, state)
        return _items(mrs)
    except Exception as e:
        return _err(e)


# ════════════════════════════════════════════════════════════════════
# Pipelines
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"gitlab", "pipelines", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_list_mr_pipelines(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
) -> str:
    """List pipelines that ran for a merge request."""
    try:
        pipelines = await _get_service(ctx).get_pipelines(_fingerprint(project, mr_iid))
        return _items(pipelines)
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "pipelines", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_get_pipeline_jobs(
    ctx: Context,
    project: Annotated[
        str, Field(description="Project full path or a pipeline URL", min_length=1)
    ],
    pipeline_id: Annotated[
        str | None, Field(description="Pipeline ID (optional when project is a pipeline URL)")
    ] = None,
    scope: Annotated[
        str | None,
        Field(description="Job status filter, e.g. failed, running, success, manual"),
    ] = None,
) -> str:
    """List the jobs of a pipeline."""
    try:
        project_path, url_id = _parse_gitlab_pipeline_url(project)
        pid = pipeline_id or url_id
        if not pid:
            msg = "pipeline_id is required unless project is a pipeline URL"
            raise ValueError(msg)
        jobs = await _get_service(ctx).get_pipeline_jobs(project_path, pid, scope)
        return _items(jobs)
    except Exception as e:
        return _err(e)


# ════════════════════════════════════════════════════════════════════
# Health and cache
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"gitlab", "health", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_health_check(ctx: Context) -> str:
    """Check that GitLab is reachable and the token is accepted."""
    try:
        status = await _get_service(ctx).client.health_check()
        return _ok(status.to_dict())
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "cache", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": False},
)
async def gitlab_cache_stats(ctx: Context) -> str:
    """Report how many merge request views and diff sets are cached."""
    return _ok(_get_service(ctx).cache_stats().to_dict())


@mcp.tool(
    tags={"gitlab", "cache"},
    annotations={"readOnlyHint": False, "idempotentHint": True, "openWorldHint": False},
)
async def gitlab_invalidate_cache(
    ctx: Context,
    project: _Project,
    mr_iid: _MrIid = None,
) -> str:
    """Drop the cached view and diffs of one merge request."""
    try:
        fingerprint = _fingerprint(project, mr_iid)
        _get_service(ctx).invalidate(fingerprint)
        return _ok(
            {
                "status": "invalidated",
                "project": fingerprint.project_path,
                "mr_iid": fingerprint.mr_iid,
            }
        )
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "cache"},
    annotations={"readOnlyHint": False, "idempotentHint": True, "openWorldHint": False},
)
async def gitlab_clear_cache(ctx: Context) -> str:
    """Empty the merge request cache."""
    _get_service(ctx).clear_cache()
    return _ok({"status": "cleared"})

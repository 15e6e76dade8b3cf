"""MCP resources for GitLab instance status."""

from __future__ import annotations

from fastmcp import Context

from .gitlab import _err, _get_service, _ok, mcp


@mcp.resource(
    "gitlab://health",
    name="GitLab Health Status",
    description="GitLab instance reachability and version information",
    mime_type="application/json",
    tags={"gitlab", "health"},
)
async def gitlab_health(ctx: Context) -> str:
    """Reachability and version of the configured GitLab instance."""
    try:
        status = await _get_service(ctx).client.health_check()
        return _ok(status.to_dict())
    except Exception as e:
        return _err(e)

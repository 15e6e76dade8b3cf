"""Shared helper functions for server modules."""

from __future__ import annotations

import re
from urllib.parse import unquote

from ..cache import Fingerprint

# ════════════════════════════════════════════════════════════════════
# GitLab URL parsing
# ════════════════════════════════════════════════════════════════════

# Matches:  <host>/<namespace/project>/-/merge_requests/<iid>
_MR_RE = re.compile(r"https?://[^/]+/(.+?)/-/merge_requests/(\d+)")
# Matches:  <host>/<namespace/project>/-/pipelines/<id>
_PIPELINE_RE = re.compile(r"https?://[^/]+/(.+?)/-/pipelines/(\d+)")


def _parse_gitlab_mr_url(value: str) -> tuple[str, str]:
    """Extract (project_path, mr_iid) from a GitLab MR URL.

    If *value* is not a URL, returns it unchanged as (value, "").
    """
    m = _MR_RE.match(value)
    if m:
        return unquote(m.group(1)), m.group(2)
    return value, ""


def _parse_gitlab_pipeline_url(value: str) -> tuple[str, str]:
    """Extract (project_path, pipeline_id) from a GitLab pipeline URL.

    If *value* is not a URL, returns it unchanged as (value, "").
    """
    m = _PIPELINE_RE.match(value)
    if m:
        return unquote(m.group(1)), m.group(2)
    return value, ""


def _fingerprint(project: str, mr_iid: str | int | None) -> Fingerprint:
    """Build a fingerprint from a project path plus IID, or from a full MR URL."""
    project_path, url_iid = _parse_gitlab_mr_url(project)
    iid = str(mr_iid) if mr_iid not in (None, "") else url_iid
    if not iid:
        msg = "mr_iid is required unless project is a merge request URL"
        raise ValueError(msg)
    return Fingerprint(project_path=project_path, mr_iid=iid)

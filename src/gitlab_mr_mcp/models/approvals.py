"""Approval models."""

from __future__ import annotations

from .base import GitLabModel
from .common import User


class ApprovalInfo(GitLabModel):
    """Approval state of a merge request.

    GraphQL only exposes the ``approved`` flag; the remaining fields keep their
    defaults until the REST approvals endpoint fills them in.
    """

    approved: bool = False
    approved_by: list[User] = []
    approvals_required: int = 0
    approvals_left: int = 0

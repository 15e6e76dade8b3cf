"""Shared test fixtures for gitlab-mr-mcp."""

from __future__ import annotations

from typing import Any

import pytest
import respx

from gitlab_mr_mcp.cache import Fingerprint, ViewCache
from gitlab_mr_mcp.client import GitLabClient, RetryPolicy
from gitlab_mr_mcp.config import GitLabConfig
from gitlab_mr_mcp.views import MergeRequestService

TEST_URL = "https://gitlab.example.com"
TEST_TOKEN = "test-token"
GRAPHQL_PATH = "/api/graphql"
REST_PREFIX = "/api/v4"


class FakeClock:
    """Manually advanced monotonic timer."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordedSleep:
    """Async sleep replacement that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def no_jitter(low: float, high: float) -> float:
    return low


def user(n: int = 1, avatar: str | None = None) -> dict[str, Any]:
    return {
        "id": f"gid://gitlab/User/{n}",
        "username": f"user{n}",
        "name": f"User {n}",
        "avatarUrl": avatar,
        "webUrl": f"{TEST_URL}/user{n}",
    }


def commit(n: int) -> dict[str, Any]:
    return {
        "id": f"gid://gitlab/Commit/{n}",
        "sha": f"{n:040d}",
        "title": f"Commit {n}",
        "message": f"Commit {n}\n\nBody",
        "authorName": "Dev",
        "authorEmail": "dev@example.com",
        "authoredDate": "2024-01-01T00:00:00Z",
        "committedDate": "2024-01-01T00:00:00Z",
        "webUrl": f"{TEST_URL}/group/project/-/commit/{n}",
    }


def discussion(n: int) -> dict[str, Any]:
    return {
        "id": f"gid://gitlab/Discussion/{n}",
        "resolved": False,
        "resolvable": True,
        "notes": {
            "nodes": [
                {
                    "id": f"gid://gitlab/Note/{n}",
                    "body": f"Comment {n}",
                    "author": user(2),
                    "createdAt": "2024-01-02T00:00:00Z",
                    "updatedAt": "2024-01-02T00:00:00Z",
                    "resolvable": True,
                    "resolved": None,
                    "position": None,
                }
            ]
        },
    }


def page_info(has_next: bool = False, cursor: str | None = None) -> dict[str, Any]:
    return {"hasNextPage": has_next, "endCursor": cursor}


def merge_request(**overrides: Any) -> dict[str, Any]:
    mr = {
        "id": "gid://gitlab/MergeRequest/1001",
        "iid": "123",
        "title": "Add feature",
        "description": "Implements the feature",
        "state": "opened",
        "sourceBranch": "feature",
        "targetBranch": "main",
        "webUrl": f"{TEST_URL}/group/project/-/merge_requests/123",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-03T00:00:00Z",
        "mergedAt": None,
        "author": user(1, avatar="https://avatars.example.com/1.png"),
        "assignees": {"nodes": [user(2)]},
        "reviewers": {"nodes": [user(3)]},
        "labels": {"nodes": [{"title": "bug"}, {"title": "backend"}]},
        "commits": {"pageInfo": page_info(), "nodes": [commit(1)]},
        "pipelines": {
            "nodes": [
                {
                    "id": "gid://gitlab/Ci::Pipeline/7",
                    "status": "SUCCESS",
                    "ref": "feature",
                    "sha": f"{1:040d}",
                    "createdAt": "2024-01-01T00:00:00Z",
                    "updatedAt": "2024-01-01T00:10:00Z",
                    "duration": 600,
                }
            ]
        },
        "approved": True,
        "discussions": {"pageInfo": page_info(), "nodes": [discussion(1)]},
    }
    mr.update(overrides)
    return mr


def graphql_data(mr: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "data": {
            "project": {
                "id": "gid://gitlab/Project/1",
                "fullPath": "group/project",
                "name": "project",
                "webUrl": f"{TEST_URL}/group/project",
                "mergeRequest": merge_request() if mr is None else mr,
            }
        }
    }


@pytest.fixture
def config() -> GitLabConfig:
    return GitLabConfig(url=TEST_URL, token=TEST_TOKEN)


@pytest.fixture
def sleeps() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(config: GitLabConfig, sleeps: RecordedSleep) -> GitLabClient:
    return GitLabClient(config, policy=RetryPolicy(), sleep=sleeps, uniform=no_jitter)


@pytest.fixture
def cache(clock: FakeClock) -> ViewCache:
    return ViewCache(timer=clock)


@pytest.fixture
def service(client: GitLabClient, cache: ViewCache) -> MergeRequestService:
    return MergeRequestService(client, cache)


@pytest.fixture
def fingerprint() -> Fingerprint:
    return Fingerprint(project_path="group/project", mr_iid="123")


@pytest.fixture
def mock_api() -> respx.MockRouter:
    with respx.mock(base_url=TEST_URL, assert_all_called=False) as router:
        yield router

"""Resilient GitLab API client using httpx.

One retry loop serves both the GraphQL endpoint and the REST API v4. Every
response goes through :func:`classify`, so both transports share the same
retry and error policy.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import quote

import httpx

from .config import GitLabConfig
from .exceptions import (
    ErrorKind,
    GitLabAuthError,
    GitLabError,
    GitLabNetworkError,
    GitLabNotFoundError,
    GitLabRateLimitError,
    GitLabUnknownError,
    error_for,
)
from .models.common import HealthStatus
from .queries import MERGE_REQUEST_QUERY

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60

Sleep = Callable[[float], Awaitable[None]]
Uniform = Callable[[float, float], float]


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Exponential backoff for a zero-based attempt number, without jitter."""
    return base_delay * 2**attempt


def retry_after_seconds(headers: Mapping[str, str]) -> int:
    """Read ``Retry-After`` in seconds, falling back to 60 when absent or unparsable."""
    value = headers.get("Retry-After")
    if value is None:
        return DEFAULT_RETRY_AFTER
    try:
        return max(int(value.strip()), 0)
    except ValueError:
        return DEFAULT_RETRY_AFTER


def classify(status_code: int, body: Any = None, *, graphql: bool = False) -> ErrorKind | None:
    """Map a decoded response to an error kind, or ``None`` when it is a success."""
    if status_code in (401, 403):
        return ErrorKind.AUTH_ERROR
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if not 200 <= status_code < 300:
        return ErrorKind.UNKNOWN_ERROR
    if graphql:
        if not isinstance(body, dict) or body.get("errors"):
            return ErrorKind.GRAPHQL_ERROR
        if body.get("data") is None:
            return ErrorKind.GRAPHQL_ERROR
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and delay shape, in seconds."""

    retries: int = 3
    base_delay: float = 1.0
    jitter: float = 0.5
    rate_limit_jitter: float = 1.0
    min_rate_limit_wait: float = 1.0

    def delay_for(
        self, error: GitLabError, attempt: int, uniform: Uniform = random.uniform
    ) -> float:
        if isinstance(error, GitLabRateLimitError):
            wait = max(float(error.retry_after or 0), self.min_rate_limit_wait)
            return wait + max(uniform(0, self.rate_limit_jitter), 0.0)
        return backoff_delay(attempt, self.base_delay) + max(uniform(0, self.jitter), 0.0)


def _error_message(kind: ErrorKind, path: str, status_code: int, body: Any) -> str:
    if kind is ErrorKind.AUTH_ERROR:
        return (
            "Authentication failed. Token may be missing read_api or api scope. "
            "Create a token at https://gitlab.com/-/profile/personal_access_tokens"
        )
    if kind is ErrorKind.NOT_FOUND:
        return f"Resource not found: {path}"
    if kind is ErrorKind.GRAPHQL_ERROR:
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            messages = ", ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            return f"GraphQL errors: {messages}"
        return "GraphQL response missing data"
    if isinstance(body, dict):
        detail = body.get("message") or body.get("error")
        if detail:
            return f"Request to {path} failed with status {status_code}: {detail}"
    return f"Request to {path} failed with status {status_code}"


class GitLabClient:
    """Async HTTP client for the GitLab GraphQL and REST v4 APIs, with retries."""

    def __init__(
        self,
        config: GitLabConfig | None = None,
        *,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        uniform: Uniform = random.uniform,
    ) -> None:
        self.config = config or GitLabConfig.from_env()
        self.config.validate()
        self.policy = policy or RetryPolicy(
            retries=self.config.retries, base_delay=self.config.retry_delay
        )
        self._sleep = sleep
        self._uniform = uniform
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            headers={
                "PRIVATE-TOKEN": self.config.token,
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout,
            verify=self.config.ssl_verify,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── HTTP helpers ──────────────────────────────────────────────

    @staticmethod
    def _encode_id(project_id: str | int) -> str:
        """Encode a project ID. Numeric IDs pass through; paths are URL-encoded."""
        if isinstance(project_id, int):
            return str(project_id)
        try:
            return str(int(project_id))
        except ValueError:
            return quote(project_id, safe="")

    def _handle_response(self, resp: httpx.Response, path: str, *, graphql: bool) -> Any:
        body: Any = None
        if resp.status_code != 204 and resp.content:
            try:
                body = resp.json()
            except ValueError as e:
                if resp.is_success:
                    if "text/html" in resp.headers.get("content-type", ""):
                        msg = "Unexpected HTML response, check URL and authentication"
                    else:
                        msg = f"JSON parse error: {e}"
                    raise GitLabUnknownError(msg, status_code=resp.status_code) from e

        kind = classify(resp.status_code, body, graphql=graphql)
        if kind is None:
            return body["data"] if graphql else body

        retry_after = (
            retry_after_seconds(resp.headers) if kind is ErrorKind.RATE_LIMIT else None
        )
        raise error_for(
            kind,
            _error_message(kind, path, resp.status_code, body),
            status_code=resp.status_code,
            retry_after=retry_after,
        )

    async def execute(
        self,
        method: str,
        path: str,
        *,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        graphql: bool = False,
        retries: int | None = None,
        base_delay: float | None = None,
    ) -> Any:
        """Perform one logical request, retrying transient failures.

        Auth, not-found and GraphQL errors fail on the first attempt. Rate
        limits wait for ``Retry-After``; network errors and other non-success
        statuses back off exponentially with jitter. When the budget runs out
        the last classified error is raised.
        """
        policy = self.policy
        if retries is not None:
            policy = replace(policy, retries=retries)
        if base_delay is not None:
            policy = replace(policy, base_delay=base_delay)

        kwargs: dict[str, Any] = {"params": params}
        if json_data is not None:
            kwargs["json"] = json_data

        attempts = policy.retries + 1
        error: GitLabError = GitLabNetworkError(f"Unknown network error: {path}")
        for attempt in range(attempts):
            logger.debug("%s %s (attempt %d/%d)", method, path, attempt + 1, attempts)
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                error = GitLabNetworkError(f"Network error calling {path}: {e}")
            else:
                try:
                    result = self._handle_response(resp, path, graphql=graphql)
                except GitLabError as e:
                    if not e.retryable:
                        logger.error(
                            "%s %s failed (non-retryable %s): %s",
                            method, path, e.kind.value, e.message,
                        )
                        raise
                    error = e
                else:
                    logger.debug("%s %s succeeded", method, path)
                    return result

            if attempt + 1 < attempts:
                delay = policy.delay_for(error, attempt, self._uniform)
                logger.warning(
                    "%s %s failed with %s, retrying in %.2fs (attempt %d/%d)",
                    method, path, error.kind.value, delay, attempt + 1, attempts,
                )
                await self._sleep(delay)

        logger.error(
            "%s %s failed after %d attempt(s): %s", method, path, attempts, error.message
        )
        raise error

    async def graphql(
        self, query: str, variables: dict[str, Any] | None = None, **options: Any
    ) -> dict[str, Any]:
        return await self.execute(
            "POST",
            self.config.graphql_url,
            json_data={"query": query, "variables": variables or {}},
            graphql=True,
            **options,
        )

    async def get(self, path: str, params: dict[str, Any] | None = None, **options: Any) -> Any:
        return await self.execute("GET", path, params=params, **options)

    async def post(self, path: str, json_data: Any = None, **options: Any) -> Any:
        return await self.execute("POST", path, json_data=json_data, **options)

    async def paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        per_page: int = 100,
        **options: Any,
    ) -> list[Any]:
        """Collect a page-numbered REST listing; a short page marks the end."""
        results: list[Any] = []
        page = 1
        while True:
            page_params = {**(params or {}), "page": page, "per_page": per_page}
            items = await self.get(path, page_params, **options)
            if not isinstance(items, list):
                break
            results.extend(items)
            if len(items) < per_page:
                break
            page += 1
        return results

    # ── Health ────────────────────────────────────────────────────

    async def health_check(self) -> HealthStatus:
        """Check connectivity. Auth failures raise; anything else reports unreachable."""
        try:
            data = await self.get("/version", retries=0)
        except GitLabAuthError:
            raise
        except GitLabError as e:
            return HealthStatus(reachable=False, error=e.message)
        version = data.get("version") if isinstance(data, dict) else None
        return HealthStatus(reachable=True, version=version or "unknown")

    # ── Merge Requests ────────────────────────────────────────────

    async def get_merge_request(
        self,
        project_path: str,
        mr_iid: str | int,
        *,
        commits_first: int = 50,
        discussions_first: int = 50,
        commits_after: str | None = None,
        discussions_after: str | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        """Fetch the raw GraphQL payload for one merge request."""
        variables = {
            "fullPath": project_path,
            "iid": str(mr_iid),
            "commitsFirst": commits_first,
            "discussionsFirst": discussions_first,
            "commitsAfter": commits_after,
            "discussionsAfter": discussions_after,
        }
        data = await self.graphql(MERGE_REQUEST_QUERY, variables, **options)
        project = data.get("project")
        if not project:
            raise GitLabNotFoundError(f"Project not found: {project_path}", status_code=None)
        if not project.get("mergeRequest"):
            raise GitLabNotFoundError(
                f"Merge request !{mr_iid} not found in project {project_path}",
                status_code=None,
            )
        return data

    async def get_merge_request_changes(
        self, project_id: str | int, mr_iid: str | int, **options: Any
    ) -> dict[str, Any]:
        enc = self._encode_id(project_id)
        return await self.get(f"/projects/{enc}/merge_requests/{mr_iid}/changes", **options)

    async def get_merge_request_approvals(
        self, project_id: str | int, mr_iid: str | int, **options: Any
    ) -> dict[str, Any]:
        enc = self._encode_id(project_id)
        return await self.get(f"/projects/{enc}/merge_requests/{mr_iid}/approvals", **options)

    async def list_merge_requests(
        self,
        *,
        author_username: str,
        project_id: str | int | None = None,
        state: str | None = None,
        **options: Any,
    ) -> list[dict]:
        """List merge requests opened by *author_username*, instance-wide or in one project."""
        params: dict[str, Any] = {"author_username": author_username}
        if state:
            params["state"] = state
        if project_id is None:
            params["scope"] = "all"
            return await self.paginate("/merge_requests", params, **options)
        enc = self._encode_id(project_id)
        return await self.paginate(f"/projects/{enc}/merge_requests", params, **options)

    # ── Pipelines ─────────────────────────────────────────────────

    async def list_merge_request_pipelines(
        self, project_id: str | int, mr_iid: str | int, **options: Any
    ) -> list[dict]:
        enc = self._encode_id(project_id)
        return await self.paginate(f"/projects/{enc}/merge_requests/{mr_iid}/pipelines", **options)

    async def get_pipeline(
        self, project_id: str | int, pipeline_id: str | int, **options: Any
    ) -> dict:
        enc = self._encode_id(project_id)
        return await self.get(f"/projects/{enc}/pipelines/{pipeline_id}", **options)

    async def list_pipeline_jobs(
        self,
        project_id: str | int,
        pipeline_id: str | int,
        scope: str | None = None,
        **options: Any,
    ) -> list[dict]:
        enc = self._encode_id(project_id)
        params = {"scope": scope} if scope else None
        return await self.paginate(
            f"/projects/{enc}/pipelines/{pipeline_id}/jobs", params, **options
        )

"""Tests for the resilient GitLab API client."""

from __future__ import annotations

import json

import httpx
import pytest
import respx
from conftest import GRAPHQL_PATH, REST_PREFIX, TEST_URL, RecordedSleep, graphql_data, no_jitter

from gitlab_mr_mcp.client import (
    GitLabClient,
    RetryPolicy,
    backoff_delay,
    classify,
    retry_after_seconds,
)
from gitlab_mr_mcp.config import GitLabConfig
from gitlab_mr_mcp.exceptions import (
    ErrorKind,
    GitLabAuthError,
    GitLabGraphQLError,
    GitLabNetworkError,
    GitLabNotFoundError,
    GitLabRateLimitError,
    GitLabUnknownError,
)


class TestEncodeId:
    def test_numeric_string(self):
        assert GitLabClient._encode_id("123") == "123"

    def test_integer(self):
        assert GitLabClient._encode_id(123) == "123"

    def test_path(self):
        assert GitLabClient._encode_id("my-group/my-project") == "my-group%2Fmy-project"


class TestBackoff:
    def test_doubles_per_attempt(self):
        assert [backoff_delay(n, 1.0) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_non_decreasing(self):
        delays = [backoff_delay(n, 0.25) for n in range(10)]
        assert delays == sorted(delays)
        assert all(d == 0.25 * 2**n for n, d in enumerate(delays))

    def test_jitter_added_to_backoff(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.5)
        delay = policy.delay_for(GitLabUnknownError("x"), 2, lambda a, b: b)
        assert delay == 4.5

    def test_jitter_never_negative(self):
        policy = RetryPolicy(base_delay=1.0)
        delay = policy.delay_for(GitLabNetworkError("x"), 0, lambda a, b: -3.0)
        assert delay == 1.0

    def test_rate_limit_delay_uses_retry_after(self):
        policy = RetryPolicy()
        delay = policy.delay_for(GitLabRateLimitError(5), 0, no_jitter)
        assert delay == 5.0

    def test_zero_retry_after_still_waits(self):
        policy = RetryPolicy(min_rate_limit_wait=1.0)
        delay = policy.delay_for(GitLabRateLimitError(0), 0, no_jitter)
        assert delay >= 1.0


class TestRetryAfterHeader:
    def test_parses_seconds(self):
        assert retry_after_seconds(httpx.Headers({"Retry-After": "5"})) == 5

    def test_defaults_when_missing(self):
        assert retry_after_seconds(httpx.Headers()) == 60

    def test_defaults_when_unparsable(self):
        headers = httpx.Headers({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        assert retry_after_seconds(headers) == 60

    def test_case_insensitive(self):
        assert retry_after_seconds(httpx.Headers({"retry-after": "7"})) == 7


class TestClassify:
    @pytest.mark.parametrize("status", [401, 403])
    def test_auth(self, status):
        assert classify(status) is ErrorKind.AUTH_ERROR

    def test_not_found(self):
        assert classify(404) is ErrorKind.NOT_FOUND

    def test_rate_limit(self):
        assert classify(429) is ErrorKind.RATE_LIMIT

    @pytest.mark.parametrize("status", [400, 409, 500, 502, 503])
    def test_other_failures(self, status):
        assert classify(status) is ErrorKind.UNKNOWN_ERROR

    def test_rest_success(self):
        assert classify(200, [{"id": 1}]) is None

    def test_graphql_success(self):
        assert classify(200, {"data": {"project": None}}, graphql=True) is None

    def test_graphql_errors(self):
        body = {"errors": [{"message": "boom"}], "data": {}}
        assert classify(200, body, graphql=True) is ErrorKind.GRAPHQL_ERROR

    def test_graphql_missing_data(self):
        assert classify(200, {}, graphql=True) is ErrorKind.GRAPHQL_ERROR

    def test_graphql_empty_errors_is_success(self):
        assert classify(200, {"errors": [], "data": {"a": 1}}, graphql=True) is None

    def test_status_wins_over_body(self):
        assert classify(401, {"data": {}}, graphql=True) is ErrorKind.AUTH_ERROR


class TestRestRequest:
    async def test_get(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/projects/123").mock(
            return_value=httpx.Response(200, json={"id": 123, "name": "test"})
        )
        result = await client.get("/projects/123")
        assert result == {"id": 123, "name": "test"}

    async def test_sends_private_token(self, client, mock_api):
        route = mock_api.get(f"{REST_PREFIX}/version").mock(
            return_value=httpx.Response(200, json={"version": "16.0"})
        )
        await client.get("/version")
        assert route.calls.last.request.headers["PRIVATE-TOKEN"] == "test-token"

    async def test_post(self, client, mock_api):
        route = mock_api.post(f"{REST_PREFIX}/projects/1/things").mock(
            return_value=httpx.Response(201, json={"ok": True})
        )
        result = await client.post("/projects/1/things", {"name": "x"})
        assert result == {"ok": True}
        assert json.loads(route.calls.last.request.content) == {"name": "x"}

    async def test_empty_response(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/nothing").mock(return_value=httpx.Response(204))
        assert await client.get("/nothing") is None

    @pytest.mark.parametrize("status", [401, 403, 404])
    async def test_non_retryable_status_calls_once(self, client, mock_api, sleeps, status):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            return_value=httpx.Response(status, text="nope")
        )
        with pytest.raises((GitLabAuthError, GitLabNotFoundError)):
            await client.get("/projects/1", retries=5)
        assert route.call_count == 1
        assert sleeps.delays == []

    async def test_auth_error_status(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(return_value=httpx.Response(403))
        with pytest.raises(GitLabAuthError) as exc_info:
            await client.get("/projects/1")
        assert exc_info.value.status_code == 403
        assert exc_info.value.kind is ErrorKind.AUTH_ERROR

    async def test_not_found_message_names_path(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/projects/999").mock(return_value=httpx.Response(404))
        with pytest.raises(GitLabNotFoundError, match="/projects/999"):
            await client.get("/projects/999")

    async def test_server_error_retries_then_unknown(self, client, mock_api, sleeps):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            return_value=httpx.Response(500, json={"message": "oops"})
        )
        with pytest.raises(GitLabUnknownError) as exc_info:
            await client.get("/projects/1")
        assert route.call_count == 4
        assert sleeps.delays == [1.0, 2.0, 4.0]
        assert exc_info.value.status_code == 500
        assert "oops" in exc_info.value.message

    async def test_recovers_after_transient_failure(self, client, mock_api, sleeps):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            side_effect=[
                httpx.Response(502),
                httpx.Response(200, json={"id": 1}),
            ]
        )
        assert await client.get("/projects/1") == {"id": 1}
        assert route.call_count == 2
        assert sleeps.delays == [1.0]

    async def test_zero_retries_is_single_attempt(self, client, mock_api, sleeps):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            return_value=httpx.Response(503)
        )
        with pytest.raises(GitLabUnknownError):
            await client.get("/projects/1", retries=0)
        assert route.call_count == 1
        assert sleeps.delays == []

    async def test_network_error_retries_then_net_error(self, client, mock_api, sleeps):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            side_effect=httpx.ConnectError
        )
        with pytest.raises(GitLabNetworkError) as exc_info:
            await client.get("/projects/1", retries=2)
        assert route.call_count == 3
        assert len(sleeps.delays) == 2
        assert exc_info.value.kind is ErrorKind.NET_ERROR

    async def test_timeout_is_network_error(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            side_effect=httpx.ReadTimeout
        )
        with pytest.raises(GitLabNetworkError):
            await client.get("/projects/1", retries=0)

    async def test_html_response_error(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            return_value=httpx.Response(
                200,
                text="<html><body>Login</body></html>",
                headers={"content-type": "text/html"},
            )
        )
        with pytest.raises(GitLabUnknownError, match="HTML"):
            await client.get("/projects/1", retries=0)

    async def test_base_delay_override(self, client, mock_api, sleeps):
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(return_value=httpx.Response(500))
        with pytest.raises(GitLabUnknownError):
            await client.get("/projects/1", retries=2, base_delay=0.1)
        assert sleeps.delays == pytest.approx([0.1, 0.2])


class TestRateLimit:
    async def test_honors_retry_after(self, client, mock_api, sleeps):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "5"}),
                httpx.Response(200, json={"id": 1}),
            ]
        )
        assert await client.get("/projects/1") == {"id": 1}
        assert route.call_count == 2
        assert len(sleeps.delays) == 1
        assert sleeps.delays[0] >= 5.0

    async def test_missing_retry_after_defaults_to_60s(self, client, mock_api, sleeps):
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            side_effect=[httpx.Response(429), httpx.Response(200, json={"id": 1})]
        )
        await client.get("/projects/1")
        assert sleeps.delays == [60.0]

    async def test_jitter_is_added_to_rate_limit_wait(self, config, mock_api):
        sleeps = RecordedSleep()
        client = GitLabClient(config, sleep=sleeps, uniform=lambda a, b: b)
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "2"}),
                httpx.Response(200, json={}),
            ]
        )
        await client.get("/projects/1")
        assert sleeps.delays == [3.0]

    async def test_exhausted_raises_rate_limit(self, client, mock_api, sleeps):
        route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            return_value=httpx.Response(429, headers={"Retry-After": "3"})
        )
        with pytest.raises(GitLabRateLimitError) as exc_info:
            await client.get("/projects/1", retries=1)
        assert route.call_count == 2
        assert exc_info.value.retry_after == 3
        assert exc_info.value.to_record().retry_after_seconds == 3
        assert sleeps.delays == [3.0]

    async def test_zero_retries_fails_immediately(self, client, mock_api, sleeps):
        mock_api.get(f"{REST_PREFIX}/projects/1").mock(
            return_value=httpx.Response(429, headers={"Retry-After": "30"})
        )
        with pytest.raises(GitLabRateLimitError):
            await client.get("/projects/1", retries=0)
        assert sleeps.delays == []


class TestGraphQL:
    async def test_returns_data(self, client, mock_api):
        route = mock_api.post(GRAPHQL_PATH).mock(
            return_value=httpx.Response(200, json={"data": {"currentUser": {"id": "1"}}})
        )
        data = await client.graphql("query { currentUser { id } }", {"a": 1})
        assert data == {"currentUser": {"id": "1"}}
        sent = json.loads(route.calls.last.request.content)
        assert sent["variables"] == {"a": 1}

    async def test_errors_array_is_not_retried(self, client, mock_api, sleeps):
        route = mock_api.post(GRAPHQL_PATH).mock(
            return_value=httpx.Response(
                200, json={"errors": [{"message": "Field 'x' doesn't exist"}]}
            )
        )
        with pytest.raises(GitLabGraphQLError, match="Field 'x'"):
            await client.graphql("query { x }")
        assert route.call_count == 1
        assert sleeps.delays == []

    async def test_missing_data(self, client, mock_api):
        mock_api.post(GRAPHQL_PATH).mock(return_value=httpx.Response(200, json={}))
        with pytest.raises(GitLabGraphQLError, match="missing data"):
            await client.graphql("query { x }")

    async def test_not_found_status_uses_same_policy(self, client, mock_api):
        route = mock_api.post(GRAPHQL_PATH).mock(return_value=httpx.Response(404))
        with pytest.raises(GitLabNotFoundError):
            await client.graphql("query { x }")
        assert route.call_count == 1

    async def test_get_merge_request_missing_project(self, client, mock_api):
        mock_api.post(GRAPHQL_PATH).mock(
            return_value=httpx.Response(200, json={"data": {"project": None}})
        )
        with pytest.raises(GitLabNotFoundError, match="Project not found"):
            await client.get_merge_request("group/missing", "1")

    async def test_get_merge_request_missing_mr(self, client, mock_api):
        mock_api.post(GRAPHQL_PATH).mock(
            return_value=httpx.Response(200, json=graphql_data(mr={}))
        )
        with pytest.raises(GitLabNotFoundError, match="!9"):
            await client.get_merge_request("group/project", "9")

    async def test_get_merge_request_variables(self, client, mock_api):
        route = mock_api.post(GRAPHQL_PATH).mock(
            return_value=httpx.Response(200, json=graphql_data())
        )
        await client.get_merge_request("group/project", 123, commits_first=10, commits_after="c1")
        variables = json.loads(route.calls.last.request.content)["variables"]
        assert variables["fullPath"] == "group/project"
        assert variables["iid"] == "123"
        assert variables["commitsFirst"] == 10
        assert variables["commitsAfter"] == "c1"
        assert variables["discussionsAfter"] is None


class TestPaginate:
    async def test_walks_until_short_page(self, client, mock_api):
        route = mock_api.get(f"{REST_PREFIX}/projects/1/pipelines").mock(
            side_effect=[
                httpx.Response(200, json=[{"id": 1}, {"id": 2}]),
                httpx.Response(200, json=[{"id": 3}]),
            ]
        )
        items = await client.paginate("/projects/1/pipelines", per_page=2)
        assert [i["id"] for i in items] == [1, 2, 3]
        assert route.call_count == 2
        assert route.calls[1].request.url.params["page"] == "2"
        assert route.calls[1].request.url.params["per_page"] == "2"

    async def test_keeps_extra_params(self, client, mock_api):
        route = mock_api.get(f"{REST_PREFIX}/projects/1/pipelines/5/jobs").mock(
            return_value=httpx.Response(200, json=[])
        )
        await client.list_pipeline_jobs("1", 5, scope="failed")
        assert route.calls.last.request.url.params["scope"] == "failed"


class TestHealthCheck:
    async def test_reachable(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/version").mock(
            return_value=httpx.Response(200, json={"version": "16.8.0"})
        )
        status = await client.health_check()
        assert status.reachable is True
        assert status.version == "16.8.0"

    async def test_unreachable(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/version").mock(return_value=httpx.Response(500))
        status = await client.health_check()
        assert status.reachable is False
        assert status.error

    async def test_auth_error_propagates(self, client, mock_api):
        mock_api.get(f"{REST_PREFIX}/version").mock(return_value=httpx.Response(401))
        with pytest.raises(GitLabAuthError):
            await client.health_check()


def test_client_validates_config():
    with pytest.raises(ValueError, match="GITLAB_BASE_URL"):
        GitLabClient(GitLabConfig(url="", token="x"))


async def test_uses_config_retry_settings(mock_api):
    sleeps = RecordedSleep()
    config = GitLabConfig(url=TEST_URL, token="t", retries=1, retry_delay=0.5)
    client = GitLabClient(config, sleep=sleeps, uniform=no_jitter)
    route = mock_api.get(f"{REST_PREFIX}/projects/1").mock(return_value=httpx.Response(500))
    with pytest.raises(GitLabUnknownError):
        await client.get("/projects/1")
    assert route.call_count == 2
    assert sleeps.delays == [0.5]


@respx.mock
async def test_path_encoding():
    route = respx.get(f"{TEST_URL}{REST_PREFIX}/projects/my-group%2Fmy-project/pipelines/4").mock(
        return_value=httpx.Response(200, json={"id": 4})
    )
    client = GitLabClient(GitLabConfig(url=TEST_URL, token="t"))
    await client.get_pipeline("my-group/my-project", 4)
    assert route.called

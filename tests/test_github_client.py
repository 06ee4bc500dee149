"""Unit tests for the GraphQL stargazer fetcher."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from starquery.domain.entities import RepoRef, StargazerFact
from starquery.domain.errors import FetchError
from starquery.infrastructure.github_client import GITHUB_API_URL, GitHubClient

REPO = RepoRef(owner="coder", name="coder")


def _envelope(edges=None, remaining=50, reset_at="2023-04-01T00:00:00Z", **extra) -> dict:
    body = {
        "data": {
            "repository": {"stargazers": {"edges": edges or []}},
            "rateLimit": {"remaining": remaining, "resetAt": reset_at},
        }
    }
    body.update(extra)
    return body


def _client(handler, token: str | None = "ghp_test") -> GitHubClient:
    return GitHubClient(token=token, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestFetchPage:

    @pytest.mark.asyncio
    async def test_parses_edges_in_order(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope([
                {"node": {"login": "user1"}, "cursor": "cursor1"},
                {"node": {"login": "user2"}, "cursor": "cursor2"},
            ]))

        facts, rate = await _client(handler).fetch_page(REPO, "")

        assert facts == [StargazerFact("user1", "cursor1"), StargazerFact("user2", "cursor2")]
        assert rate.remaining == 50
        assert rate.reset_at == datetime(2023, 4, 1, tzinfo=timezone.utc)
        assert not rate.exhausted

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_envelope())

        await _client(handler).fetch_page(REPO, "")

        assert seen["url"] == GITHUB_API_URL
        assert seen["auth"] == "Bearer ghp_test"
        assert "stargazers(first: $first, after: $after)" in seen["body"]["query"]
        assert seen["body"]["variables"] == {"owner": "coder", "name": "coder", "first": 100, "after": None}

    @pytest.mark.asyncio
    async def test_cursor_is_forwarded(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["after"] = json.loads(request.content)["variables"]["after"]
            return httpx.Response(200, json=_envelope())

        await _client(handler).fetch_page(REPO, "Y3Vyc29yOjEwMA==")
        assert seen["after"] == "Y3Vyc29yOjEwMA=="

    @pytest.mark.asyncio
    async def test_no_token_sends_no_authorization(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=_envelope())

        await _client(handler, token=None).fetch_page(REPO)
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope(remaining=0, reset_at="2030-01-01T12:00:00Z"))

        _, rate = await _client(handler).fetch_page(REPO)
        assert rate.exhausted
        assert rate.reset_at == datetime(2030, 1, 1, 12, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_unparsable_reset_when_exhausted_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope(remaining=0, reset_at="soon"))

        with pytest.raises(FetchError, match="parse reset time"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_reset_without_utc_offset_when_exhausted_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope(remaining=0, reset_at="2030-01-01T00:00:00"))

        with pytest.raises(FetchError, match="parse reset time"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_reset_without_utc_offset_is_ignored_while_quota_remains(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope(remaining=10, reset_at="2030-01-01T00:00:00"))

        _, rate = await _client(handler).fetch_page(REPO)
        assert rate.reset_at is None

    @pytest.mark.asyncio
    async def test_unparsable_reset_is_ignored_while_quota_remains(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope(remaining=10, reset_at="soon"))

        _, rate = await _client(handler).fetch_page(REPO)
        assert rate.remaining == 10
        assert rate.reset_at is None

    @pytest.mark.asyncio
    async def test_non_2xx_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(FetchError, match="unexpected status 502"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_transport_failure_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError, match="request failed"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_malformed_json_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"{not json")

        with pytest.raises(FetchError, match="decode response"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_missing_rate_limit_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"repository": {"stargazers": {"edges": []}}}})

        with pytest.raises(FetchError, match="missing rateLimit"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_graphql_errors_without_repository_are_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "data": {"repository": None, "rateLimit": {"remaining": 4999, "resetAt": "2030-01-01T00:00:00Z"}},
                "errors": [{"type": "NOT_FOUND", "message": "Could not resolve to a Repository"}],
            })

        with pytest.raises(FetchError, match="GraphQL errors"):
            await _client(handler).fetch_page(REPO)

    @pytest.mark.asyncio
    async def test_edges_without_account_keep_their_cursor(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope([
                {"node": {"login": "user1"}, "cursor": "cursor1"},
                {"node": None, "cursor": "ghost1"},
                {"node": {}, "cursor": "ghost2"},
            ]))

        facts, _ = await _client(handler).fetch_page(REPO)
        assert facts == [
            StargazerFact("user1", "cursor1"),
            StargazerFact(None, "ghost1"),
            StargazerFact(None, "ghost2"),
        ]
        assert facts[-1].cursor == "ghost2"

    @pytest.mark.asyncio
    async def test_edges_without_cursor_are_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope([
                {"node": {"login": "user1"}},
                "garbage",
                {"node": {"login": "user2"}, "cursor": "cursor2"},
            ]))

        facts, _ = await _client(handler).fetch_page(REPO)
        assert facts == [StargazerFact("user2", "cursor2")]

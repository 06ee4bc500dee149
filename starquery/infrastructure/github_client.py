from __future__ import annotations

import logging
from datetime import datetime

import httpx

from starquery.domain.entities import RateLimitState, RepoRef, StargazerFact
from starquery.domain.errors import FetchError
from starquery.domain.interfaces import IStargazerFetcher

log = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com/graphql"
PAGE_SIZE      = 100
REQUEST_TIMEOUT = 30.0

GRAPHQL_QUERY = """
query Stargazers($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    stargazers(first: $first, after: $after) {
      edges {
        node { login }
        cursor
      }
    }
  }
  rateLimit {
    remaining
    resetAt
  }
}
"""


class GitHubClient(IStargazerFetcher):
    """
    Concrete implementation of IStargazerFetcher for GitHub's GraphQL API.

    The constructor receives an httpx.AsyncClient (injected) rather than
    creating one internally. This lets callers control the client lifecycle
    and makes testing trivial — pass a client built on httpx.MockTransport.

    One call is one request: retry and backoff belong to the sync loop.
    """

    def __init__(self, token: str | None, client: httpx.AsyncClient, api_url: str = GITHUB_API_URL) -> None:
        self._client  = client
        self._api_url = api_url
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    # Anti-Corruption Layer
    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        """Convert GitHub's RFC3339 timestamp to an aware datetime."""
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            raise ValueError(f"timestamp has no UTC offset: {value!r}")
        return parsed

    def _parse_rate_limit(self, rate: dict) -> RateLimitState:
        """
        ``resetAt`` only matters once the quota is exhausted, so it is parsed
        strictly at ``remaining == 0`` and best-effort otherwise.
        """
        try:
            remaining = int(rate["remaining"])
        except (KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"malformed rateLimit: {rate!r}") from exc

        raw_reset = rate.get("resetAt")
        if remaining == 0:
            try:
                reset_at = self._parse_datetime(raw_reset)
            except (AttributeError, TypeError, ValueError) as exc:
                raise FetchError(f"parse reset time: {raw_reset!r}") from exc
        else:
            try:
                reset_at = self._parse_datetime(raw_reset) if raw_reset else None
            except (AttributeError, TypeError, ValueError):
                reset_at = None
        return RateLimitState(remaining=remaining, reset_at=reset_at)

    @staticmethod
    def _parse_edge(edge: dict) -> StargazerFact | None:
        """
        Edges whose account is gone (``node: null``) still carry a cursor and
        are kept with ``login=None`` so pagination moves past them.
        """
        cursor = edge.get("cursor") if isinstance(edge, dict) else None
        if not cursor or not isinstance(cursor, str):
            log.debug("Skipping stargazer edge without cursor %r", edge)
            return None
        try:
            login = edge["node"]["login"] or None
        except (KeyError, TypeError):
            log.debug("Stargazer edge without login at cursor %s", cursor)
            login = None
        return StargazerFact(login=login, cursor=cursor)

    # IStargazerFetcher implementation
    async def fetch_page(self, repo: RepoRef, cursor: str = "") -> tuple[list[StargazerFact], RateLimitState]:
        variables = {
            "owner": repo.owner,
            "name":  repo.name,
            "first": PAGE_SIZE,
            "after": cursor or None,
        }

        try:
            response = await self._client.post(
                self._api_url,
                headers=self._headers,
                json={"query": GRAPHQL_QUERY, "variables": variables},
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise FetchError(f"unexpected status {exc.response.status_code} for {repo}") from exc
        except httpx.RequestError as exc:
            raise FetchError(f"request failed for {repo}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"decode response for {repo}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise FetchError(f"missing data envelope for {repo}: {data!r:.200}")
        payload = data["data"]

        # GraphQL-level errors (different from HTTP errors)
        repository = payload.get("repository")
        if "errors" in data:
            if repository is None:
                raise FetchError(f"GraphQL errors for {repo}: {data['errors']}")
            log.warning("GraphQL errors for %s: %s", repo, data["errors"])

        if not isinstance(payload.get("rateLimit"), dict):
            raise FetchError(f"missing rateLimit for {repo}")
        rate_limit = self._parse_rate_limit(payload["rateLimit"])

        try:
            edges = (repository or {})["stargazers"]["edges"] or []
        except (KeyError, TypeError) as exc:
            raise FetchError(f"missing stargazers for {repo}") from exc

        # Apply anti-corruption layer to every edge
        facts = [fact for edge in edges if (fact := self._parse_edge(edge)) is not None]
        return facts, rate_limit

"""
Domain Layer — Interfaces (Abstract Contracts)
-----------------------------------------------
The application layer (sync loop, webhook ingestor, query service) depends
on these abstractions only. Concrete adapters live in the infrastructure
layer and are wired together in ``starquery.main``.

Swap the PostgreSQL store for the in-memory one, or GitHubClient for a
fake fetcher in tests, without touching application code.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterable
from .entities import RateLimitState, RepoRef, StargazerFact


class IKeyValueStore(ABC):
    """
    Expiring key-value store shared by every writer and reader.

    Implementations must be safe to call from several threads at once.
    Any backend failure is raised as StoreError; implementations never
    retry on the caller's behalf.
    """

    @abstractmethod
    def set_with_expiry(self, ttl_seconds: int, pairs: Iterable[tuple[str, str]]) -> None:
        """
        Write every (key, value) pair in one call, resetting each key's
        expiry to ``ttl_seconds`` from now. An empty batch is a no-op.
        """
        ...

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the stored value, or "" when the key is missing or expired."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the key. Deleting an absent key succeeds."""
        ...


class IStargazerFetcher(ABC):
    """Contract that any stargazer source must fulfil."""

    @abstractmethod
    async def fetch_page(self, repo: RepoRef, cursor: str = "") -> tuple[list[StargazerFact], RateLimitState]:
        """
        Fetch one page of stargazers after ``cursor`` ("" = from the start).

        Returns:
            facts       — stargazers in upstream order; the last cursor
                          starts the next page
            rate_limit  — the caller's rate-limit snapshot from the same
                          response

        Raises FetchError on any failure. Never retries.
        """
        ...

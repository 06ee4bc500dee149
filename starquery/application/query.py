from __future__ import annotations
import asyncio
import logging

from starquery.domain.entities import LookupResult, RepoRef
from starquery.domain.errors import StoreError
from starquery.domain.interfaces import IKeyValueStore

log = logging.getLogger(__name__)


class StarQueryService:
    """Read-only "has user U starred repo R?" lookup. One store read per call."""

    def __init__(self, store: IKeyValueStore) -> None:
        self._store = store

    async def lookup(self, repo: RepoRef, username: str) -> LookupResult:
        try:
            value = await asyncio.to_thread(self._store.get, repo.key(username))
        except StoreError as exc:
            log.error("Failed to read stargazer data | repo=%s | user=%s | %s", repo, username, exc)
            return LookupResult.ERROR
        return LookupResult.FOUND if value else LookupResult.NOT_FOUND

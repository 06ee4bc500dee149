from __future__ import annotations
import asyncio
from typing import Iterable

from starquery.domain.entities import RepoRef
from starquery.domain.interfaces import IKeyValueStore

# Both ingestion paths write the same sentinel with the same TTL, so the
# store cannot tell a polled fact from a webhook fact.
STARRED_VALUE       = "true"
STARGAZER_TTL       = 24 * 60 * 60


async def store_stargazers(store: IKeyValueStore, repo: RepoRef, logins: Iterable[str], ttl: int = STARGAZER_TTL) -> int:
    """Mark every login as a stargazer of ``repo`` in one batched write."""
    pairs = [(repo.key(login), STARRED_VALUE) for login in logins]
    if not pairs:
        return 0
    await asyncio.to_thread(store.set_with_expiry, ttl, pairs)
    return len(pairs)


async def remove_stargazer(store: IKeyValueStore, repo: RepoRef, login: str) -> None:
    await asyncio.to_thread(store.delete, repo.key(login))

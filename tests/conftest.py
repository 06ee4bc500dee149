"""Shared pytest fixtures and fakes for starquery tests."""

from __future__ import annotations

import json
import time
from typing import Iterable

import pytest

from starquery.application.webhook import sign
from starquery.domain.entities import RateLimitState, RepoRef, StargazerFact
from starquery.domain.errors import StoreError
from starquery.domain.interfaces import IKeyValueStore, IStargazerFetcher
from starquery.infrastructure.memory_store import InMemoryKeyValueStore

SECRET = "secret"
PLENTY = RateLimitState(remaining=5000)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedFetcher(IStargazerFetcher):
    """
    Returns canned pages keyed by (repo, cursor).

    A script value is either (logins, RateLimitState) or an exception to
    raise. A login may also be a ready-made StargazerFact. Unscripted
    cursors return an empty page, which ends the sweep. Every call is
    recorded with its monotonic timestamp.
    """

    def __init__(self, script: dict | None = None) -> None:
        self.script = script or {}
        self.calls: list[tuple[RepoRef, str, float]] = []

    async def fetch_page(self, repo: RepoRef, cursor: str = ""):
        self.calls.append((repo, cursor, time.monotonic()))
        entry = self.script.get((repo, cursor), ([], PLENTY))
        if isinstance(entry, Exception):
            raise entry
        logins, rate = entry
        facts = [
            login if isinstance(login, StargazerFact) else StargazerFact(login=login, cursor=f"c-{login}")
            for login in logins
        ]
        return facts, rate


class FailingStore(IKeyValueStore):
    """Store whose every command fails."""

    def set_with_expiry(self, ttl_seconds: int, pairs: Iterable[tuple[str, str]]) -> None:
        raise StoreError("connection refused")

    def get(self, key: str) -> str:
        raise StoreError("connection refused")

    def delete(self, key: str) -> None:
        raise StoreError("connection refused")


def star_payload(repo: RepoRef, login: str, action: str) -> dict:
    return {
        "action": action,
        "repository": {
            "name": repo.name,
            "full_name": str(repo),
            "owner": {"login": repo.owner},
        },
        "sender": {"login": login},
    }


def webhook_headers(body: bytes, event: str = "star", secret: str = SECRET) -> dict:
    return {
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": sign(secret, body),
        "Content-Type": "application/json",
    }


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode()


@pytest.fixture
def repo():
    return RepoRef(owner="acme", name="widget")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)

from __future__ import annotations
import asyncio
import contextlib
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Sequence

from starquery.domain.entities import RepoRef, SweepResult
from starquery.domain.interfaces import IKeyValueStore, IStargazerFetcher
from .stargazers import STARGAZER_TTL, store_stargazers

log = logging.getLogger(__name__)

SYNC_INTERVAL     = 15 * 60
RATE_LIMIT_MARGIN = 1.0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SyncLoop:
    """
    Periodically re-scans every tracked repo's stargazers into the store.

    Each page is written as soon as it arrives, so a sweep that fails
    half-way still refreshes the TTL of everything it saw. The poll path
    never deletes: a user missing from a sweep simply ages out of the store
    when their TTL lapses.

    All dependencies are injected:
      - IStargazerFetcher → how to talk to GitHub
      - IKeyValueStore    → where facts are written

    Every blocking point (network fetch, rate-limit wait, idle wait between
    sweeps) is interrupted by close().
    """

    def __init__(
        self,
        fetcher: IStargazerFetcher,
        store: IKeyValueStore,
        repos: Sequence[RepoRef],
        interval: float = SYNC_INTERVAL,
        ttl: int = STARGAZER_TTL,
        rate_limit_margin: float = RATE_LIMIT_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetcher           = fetcher
        self._store             = store
        self._repos             = tuple(repos)
        self._interval          = interval
        self._ttl               = ttl
        self._rate_limit_margin = rate_limit_margin
        self._clock             = clock
        self._stop_event        = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def repos(self) -> tuple[RepoRef, ...]:
        return self._repos

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _wait(self, seconds: float) -> bool:
        """
        Sleep for ``seconds`` unless stopped first.
        Returns True if the full wait elapsed, False on stop.
        """
        if self._stop_event.is_set():
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return True
        return False

    async def sweep_repo(self, repo: RepoRef) -> SweepResult:
        """
        Walk every page for one repo, oldest stargazer first.

        A failure ends this repo's pass only: it is logged and reported in
        the result together with whatever was written before it, and the
        next scheduled sweep starts over from the first page.
        """
        started = time.monotonic()
        cursor  = ""
        total   = 0
        pages   = 0
        status  = "cancelled"

        try:
            while not self._stop_event.is_set():
                facts, rate = await self._fetcher.fetch_page(repo, cursor)
                pages += 1

                # Page N is durable before page N+1 is requested.
                logins  = [f.login for f in facts if f.login]
                written = await store_stargazers(self._store, repo, logins, self._ttl)
                total  += written
                log.info("Stored %d stargazers | repo=%s | page=%d | rate_limit_remaining=%d",
                         written, repo, pages, rate.remaining)

                if rate.exhausted:
                    wait = (rate.reset_at - self._clock()).total_seconds()
                    if wait > 0:
                        wait += self._rate_limit_margin
                        log.info("Rate limit reached | repo=%s | waiting %.1fs until %s",
                                 repo, wait, rate.reset_at.isoformat())
                        if not await self._wait(wait):
                            break

                # Only an empty edge list ends the walk; ghost edges still advance it.
                if not facts:
                    status = "success"
                    break
                cursor = facts[-1].cursor

        except Exception as exc:
            elapsed = time.monotonic() - started
            log.error("Failed to sync stargazers | repo=%s | %d stargazers | %d pages | %s",
                      repo, total, pages, exc, exc_info=True)
            return SweepResult(
                repo          = repo,
                stargazers    = total,
                pages         = pages,
                status        = "failed",
                elapsed_secs  = elapsed,
                error_message = str(exc) or type(exc).__name__,
            )

        elapsed = time.monotonic() - started
        log.info("Sweep %s | repo=%s | %d stargazers | %d pages | %.1fs",
                 status, repo, total, pages, elapsed)
        return SweepResult(
            repo         = repo,
            stargazers   = total,
            pages        = pages,
            status       = status,
            elapsed_secs = elapsed,
        )

    async def sweep_all(self) -> list[SweepResult]:
        """Sweep every tracked repo once, sequentially."""
        results = []
        for repo in self._repos:
            if self._stop_event.is_set():
                break
            results.append(await self.sweep_repo(repo))
        return results

    async def run(self) -> None:
        """Sweep forever, one sweep per interval, until close()."""
        log.info("Sync loop started | repos=%s | interval=%.0fs",
                 ", ".join(str(r) for r in self._repos), self._interval)
        while not self._stop_event.is_set():
            await self.sweep_all()
            if not await self._wait(self._interval):
                break
        log.info("Sync loop stopped")

    def start(self) -> asyncio.Task:
        if self.running:
            raise RuntimeError("sync loop already running")
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="stargazer-sync")
        return self._task

    async def close(self) -> None:
        """
        Stop the loop and block until its task has exited.

        Waits notice the stop event; an in-flight fetch or store call is
        abandoned through cancellation.
        """
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

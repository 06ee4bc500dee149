from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import logging

import httpx

from starquery.domain.errors import UpstreamError
from .locking import ReadWriteLock

log = logging.getLogger(__name__)

GITHUB_META_URL   = "https://api.github.com/meta"
REFRESH_INTERVAL  = 60 * 60
RETRY_MIN_DELAY   = 1.0
RETRY_MAX_DELAY   = 10.0
REQUEST_TIMEOUT   = 30.0

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class IPFilter:
    """
    Allow-list of the CIDR blocks GitHub delivers webhooks from.

    The block list is fetched from the REST ``meta`` endpoint on start()
    and then refreshed every ``refresh_interval`` seconds in a background
    task. Each refresh swaps in a brand-new immutable tuple; readers copy
    the reference under the read lock and match outside it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        meta_url: str = GITHUB_META_URL,
        refresh_interval: float = REFRESH_INTERVAL,
    ) -> None:
        self._client           = client
        self._meta_url         = meta_url
        self._refresh_interval = refresh_interval
        self._lock             = ReadWriteLock()
        self._networks: tuple[IPNetwork, ...] = ()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    def is_allowed(self, remote_address: str | None) -> bool:
        """True if ``remote_address`` falls inside a GitHub hook block."""
        if not remote_address:
            return False
        try:
            address = ipaddress.ip_address(remote_address)
        except ValueError:
            return False

        with self._lock.read():
            networks = self._networks
        return any(address in network for network in networks)

    @property
    def networks(self) -> tuple[IPNetwork, ...]:
        with self._lock.read():
            return self._networks

    async def _fetch_networks(self) -> tuple[IPNetwork, ...]:
        try:
            response = await self._client.get(self._meta_url, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            meta = response.json()
            hooks = meta["hooks"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise UpstreamError(f"get API meta: {exc}") from exc

        networks: list[IPNetwork] = []
        for hook in hooks:
            try:
                networks.append(ipaddress.ip_network(hook, strict=False))
            except (TypeError, ValueError) as exc:
                log.error("Skipping unparsable hook CIDR %r: %s", hook, exc)
        return tuple(networks)

    async def refresh(self) -> bool:
        """
        Replace the allow-list with GitHub's current hook blocks.

        Failed fetches are retried with capped exponential backoff until one
        succeeds or the filter is closed. Returns False if closed first.
        """
        delay = RETRY_MIN_DELAY
        while True:
            try:
                networks = await self._fetch_networks()
                break
            except UpstreamError as exc:
                log.error("IP allow-list refresh failed: %s — retrying in %.0fs", exc, delay)
                if not await self._wait(delay):
                    return False
                delay = min(delay * 2, RETRY_MAX_DELAY)

        with self._lock.write():
            self._networks = networks
        log.info("IP allow-list refreshed | %d hook networks", len(networks))
        return True

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns False if stopped meanwhile."""
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def _run(self) -> None:
        while await self._wait(self._refresh_interval):
            await self.refresh()

    async def start(self) -> None:
        """Load the initial allow-list, then keep it fresh in the background."""
        self._stop_event = asyncio.Event()
        if not await self.refresh():
            return
        self._task = asyncio.create_task(self._run(), name="ip-filter-refresh")

    async def close(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

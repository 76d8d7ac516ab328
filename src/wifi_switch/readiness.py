"""Wait until a freshly started connection can reach the outside world."""

from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

logger = logging.getLogger(__name__)


class AdapterUnavailableError(RuntimeError):
    """Raised when the wireless adapter is missing or down after connecting."""


def normalise_probe_url(target: str) -> str:
    """Return *target* as a URL, defaulting to plain HTTP for bare hosts."""

    cleaned = target.strip()
    if "://" not in cleaned:
        cleaned = f"http://{cleaned}"
    return cleaned


class HTTPReachabilityProbe:
    """Probe a URL with ``HEAD`` requests; any HTTP response counts as reachable.

    A malformed *target* raises :class:`httpx.InvalidURL` on construction.
    """

    def __init__(
        self,
        target: str,
        *,
        timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = httpx.URL(normalise_probe_url(target))
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=timeout),
            follow_redirects=False,
            transport=transport,
        )

    def __call__(self) -> bool:
        try:
            response = self._client.head(self._url)
        except httpx.HTTPError as exc:
            logger.debug("Probe of %s failed: %s", self._url, exc)
            return False
        logger.debug("Probe of %s answered %s", self._url, response.status_code)
        return True

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HTTPReachabilityProbe":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class NetworkReadinessPoller:
    """Confirm the adapter is present, then poll the probe until it succeeds.

    The poll deliberately has no deadline: slow associations are waited out
    and only process termination interrupts the loop.
    """

    def __init__(
        self,
        interface: str,
        *,
        adapter_check: Callable[[str], bool],
        probe: Callable[[], bool],
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interface = interface
        self._adapter_check = adapter_check
        self._probe = probe
        self._poll_interval = max(0.001, poll_interval)
        self._sleep = sleep
        self._clock = clock

    def wait(self) -> float:
        """Block until the network is reachable and return the elapsed seconds."""

        started = self._clock()
        if not self._adapter_check(self._interface):
            raise AdapterUnavailableError(f"Wireless interface {self._interface} is not available")
        attempts = 1
        while not self._probe():
            attempts += 1
            self._sleep(self._poll_interval)
        elapsed = self._clock() - started
        logger.info("Network reachable after %d probe(s), %.3fs", attempts, elapsed)
        return elapsed


__all__ = [
    "AdapterUnavailableError",
    "HTTPReachabilityProbe",
    "NetworkReadinessPoller",
    "normalise_probe_url",
]

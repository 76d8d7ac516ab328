"""Ordered connection sequence for switching to a netctl profile."""

from __future__ import annotations

import getpass
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable

from .config import SwitchConfig
from .network import (
    HardwareAddressError,
    HardwareAddressRandomizer,
    NetworkBackend,
    NetworkError,
    NetworkUnavailableError,
)
from .password_cache import PasswordCache, PasswordCacheError
from .profiles import CredentialInjector, CredentialWriteError, ProfileRegistry
from .readiness import AdapterUnavailableError, NetworkReadinessPoller

logger = logging.getLogger(__name__)


class AttemptState(IntEnum):
    """Steps of a connection attempt, in the only order they may occur."""

    PENDING = 0
    STOPPING_ALL = 1
    ADAPTER_RESET = 2
    HARDWARE_ADDRESS_RANDOMIZATION = 3
    CREDENTIAL_STAGING = 4
    CONNECTING = 5
    WAITING_FOR_NETWORK = 6
    POST_CONNECT_REFRESH = 7
    FINISHED = 8


class AttemptOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    # Never produced while the readiness poll has no deadline.
    TIMED_OUT = "timed_out"
    ADAPTER_UNAVAILABLE = "adapter_unavailable"
    FAILED = "failed"


@dataclass(slots=True)
class ConnectionAttempt:
    """In-memory record of one run of the connection sequence."""

    profile: str
    started_at: float = field(default_factory=time.monotonic)
    state: AttemptState = AttemptState.PENDING
    outcome: AttemptOutcome | None = None
    hardware_address: str | None = None
    elapsed: float | None = None
    cache_refreshed: bool | None = None
    error: str | None = None
    history: list[AttemptState] = field(default_factory=list)

    def advance(self, state: AttemptState) -> None:
        if state <= self.state:
            raise ValueError(f"Cannot move from {self.state.name} back to {state.name}")
        self.state = state
        self.history.append(state)

    def finish(self, outcome: AttemptOutcome, error: str | None = None) -> None:
        if self.outcome is not None:
            raise ValueError(f"Attempt already finished as {self.outcome.value}")
        self.outcome = outcome
        self.error = error
        self.advance(AttemptState.FINISHED)

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCEEDED


class ConnectionOrchestrator:
    """Run the stop, reset, stage, connect and wait sequence for one profile."""

    def __init__(
        self,
        config: SwitchConfig,
        *,
        backend: NetworkBackend,
        registry: ProfileRegistry,
        injector: CredentialInjector,
        cache: PasswordCache,
        poller: NetworkReadinessPoller,
        randomizer: HardwareAddressRandomizer | None = None,
        prompt: Callable[[str], str] = getpass.getpass,
        report: Callable[[str], None] = print,
    ) -> None:
        self._config = config
        self._backend = backend
        self._registry = registry
        self._injector = injector
        self._cache = cache
        self._poller = poller
        self._randomizer = randomizer
        self._prompt = prompt
        self._report = report

    def connect(self, profile: str) -> ConnectionAttempt:
        attempt = ConnectionAttempt(profile=profile)
        try:
            self._run(attempt)
        except NetworkUnavailableError as exc:
            self._report(f"Unable to switch to {profile}: {exc}")
            attempt.finish(AttemptOutcome.FAILED, str(exc))
        return attempt

    # ------------------------------- sequence ------------------------------
    def _run(self, attempt: ConnectionAttempt) -> None:
        profile = attempt.profile
        interface = self._config.interface

        attempt.advance(AttemptState.STOPPING_ALL)
        self._tolerate("stop active profiles", self._backend.stop_all)

        attempt.advance(AttemptState.ADAPTER_RESET)
        self._tolerate(f"bring {interface} down", self._backend.link_down, interface)

        if self._config.randomize_mac and self._randomizer is not None:
            attempt.advance(AttemptState.HARDWARE_ADDRESS_RANDOMIZATION)
            attempt.hardware_address = self._randomize(interface)

        if self._registry.is_work_profile(profile):
            attempt.advance(AttemptState.CREDENTIAL_STAGING)
            self._stage_credential(profile)

        attempt.advance(AttemptState.CONNECTING)
        self._report(f"Connecting to {profile}...")
        try:
            self._backend.connect(profile)
        except NetworkUnavailableError:
            raise
        except NetworkError as exc:
            self._report(f"Starting {profile} reported an error: {exc}")

        attempt.advance(AttemptState.WAITING_FOR_NETWORK)
        try:
            attempt.elapsed = self._poller.wait()
        except AdapterUnavailableError as exc:
            self._report(f"Error: {exc}. Giving up on {profile}.")
            attempt.finish(AttemptOutcome.ADAPTER_UNAVAILABLE, str(exc))
            return
        self._report(f"Connected to {profile}; network is up after {attempt.elapsed:.3f}s")

        attempt.advance(AttemptState.POST_CONNECT_REFRESH)
        attempt.cache_refreshed = self._refresh_cache()
        attempt.finish(AttemptOutcome.SUCCEEDED)

    # ------------------------------- helpers -------------------------------
    def _tolerate(self, description: str, action: Callable[..., None], *args: str) -> None:
        try:
            action(*args)
        except NetworkUnavailableError:
            raise
        except NetworkError as exc:
            logger.warning("Unable to %s: %s", description, exc)

    def _randomize(self, interface: str) -> str | None:
        assert self._randomizer is not None
        try:
            address = self._randomizer.randomize(interface)
        except HardwareAddressError as exc:
            self._report(f"Unable to randomize hardware address: {exc}")
            return None
        self._report(f"New hardware address: {address}")
        return address

    def _stage_credential(self, profile: str) -> None:
        try:
            secret = self._cache.get_today()
        except PasswordCacheError as exc:
            logger.warning("Password cache unavailable: %s", exc)
            secret = None
        if secret is None:
            self._report(f"No cached password for {profile} today.")
            secret = self._prompt(f"Enter today's password for {profile}: ").strip()
            if not secret:
                self._report("No password entered; keeping the stored password.")
                return
        try:
            self._injector.set_secret(profile, secret)
        except CredentialWriteError as exc:
            self._report(f"Unable to update the password for {profile}: {exc}")

    def _refresh_cache(self) -> bool:
        try:
            refreshed = self._cache.refresh()
        except PasswordCacheError as exc:
            logger.warning("Password cache refresh failed: %s", exc)
            refreshed = False
        if refreshed:
            self._report("Password cache refreshed.")
        else:
            self._report("Password cache refresh failed.")
        return refreshed


__all__ = [
    "AttemptOutcome",
    "AttemptState",
    "ConnectionAttempt",
    "ConnectionOrchestrator",
]

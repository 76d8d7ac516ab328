"""netctl, ip and macchanger wrappers used by the connection orchestrator."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from typing import Sequence

logger = logging.getLogger(__name__)

HARDWARE_ADDRESS_PATTERN = re.compile(r"(?:[0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}")


class NetworkError(RuntimeError):
    """Raised when a network-manager or adapter command fails."""


class NetworkUnavailableError(NetworkError):
    """Raised when a required command cannot be launched at all."""


class HardwareAddressError(RuntimeError):
    """Raised when the hardware address could not be randomized."""


def run_command(args: Sequence[str], *, timeout: float) -> str:
    """Run *args* and return its standard output.

    Raises :class:`NetworkUnavailableError` when the executable is missing and
    :class:`NetworkError` for time-outs and non-zero exit statuses.
    """

    logger.debug("Running %s", shlex.join(args))
    try:
        completed = subprocess.run(
            list(args),
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise NetworkUnavailableError(f"{args[0]} command unavailable") from exc
    except subprocess.TimeoutExpired as exc:
        raise NetworkError(f"{args[0]} command timed out") from exc
    except subprocess.CalledProcessError as exc:
        error_output = (exc.stderr or "").strip() or (exc.stdout or "").strip() or str(exc)
        raise NetworkError(error_output) from exc
    return completed.stdout


def extract_hardware_address(output: str) -> str | None:
    """Return the newly assigned MAC from macchanger output, if any."""

    for line in output.splitlines():
        if line.strip().lower().startswith("new mac"):
            match = HARDWARE_ADDRESS_PATTERN.search(line)
            if match:
                return match.group(0).lower()
    matches = HARDWARE_ADDRESS_PATTERN.findall(output)
    if matches:
        return matches[-1].lower()
    return None


class NetworkBackend:
    """Abstract interface for the network manager and the wireless adapter."""

    def connect(self, profile: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def disconnect(self, profile: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def stop_all(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def restart(self, profile: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def link_down(self, interface: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def link_is_up(self, interface: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError


class NetctlBackend(NetworkBackend):
    """Drive netctl profiles and the adapter link through privileged commands."""

    def __init__(
        self,
        *,
        privilege_prefix: Sequence[str] = ("sudo",),
        timeout: float = 30.0,
        netctl: str = "netctl",
    ) -> None:
        self._privilege_prefix = list(privilege_prefix)
        self._timeout = timeout
        self._netctl = netctl

    # ------------------------------- helpers -------------------------------
    def _run(self, args: Sequence[str]) -> str:
        return run_command(args, timeout=self._timeout)

    def _privileged(self, *args: str) -> list[str]:
        return [*self._privilege_prefix, *args]

    # ---------------------------- interface impl ---------------------------
    def connect(self, profile: str) -> None:
        self._run(self._privileged(self._netctl, "start", profile))

    def disconnect(self, profile: str) -> None:
        self._run(self._privileged(self._netctl, "stop", profile))

    def stop_all(self) -> None:
        self._run(self._privileged(self._netctl, "stop-all"))

    def restart(self, profile: str) -> None:
        self._run(self._privileged(self._netctl, "restart", profile))

    def link_down(self, interface: str) -> None:
        self._run(self._privileged("ip", "link", "set", interface, "down"))

    def link_is_up(self, interface: str) -> bool:
        """Return ``False`` when the adapter is missing or reported down."""

        try:
            output = self._run(["ip", "link", "show", interface])
        except NetworkError as exc:
            logger.warning("Unable to query interface %s: %s", interface, exc)
            return False
        if not output.strip():
            return False
        return "state DOWN" not in output


class HardwareAddressRandomizer:
    """Assign a random hardware address to an adapter using macchanger."""

    def __init__(
        self,
        *,
        options: str = "-r",
        privilege_prefix: Sequence[str] = ("sudo",),
        timeout: float = 30.0,
        command: str = "macchanger",
    ) -> None:
        self._options = shlex.split(options)
        self._privilege_prefix = list(privilege_prefix)
        self._timeout = timeout
        self._command = command

    def _run(self, args: Sequence[str]) -> str:
        return run_command(args, timeout=self._timeout)

    def randomize(self, interface: str) -> str:
        """Randomize *interface*'s address and return the new address."""

        args = [*self._privilege_prefix, self._command, *self._options, interface]
        try:
            output = self._run(args)
        except NetworkError as exc:
            raise HardwareAddressError(str(exc)) from exc
        address = extract_hardware_address(output)
        if address is None:
            raise HardwareAddressError("no hardware address found in macchanger output")
        return address


__all__ = [
    "HardwareAddressError",
    "HardwareAddressRandomizer",
    "NetctlBackend",
    "NetworkBackend",
    "NetworkError",
    "NetworkUnavailableError",
    "extract_hardware_address",
    "run_command",
]

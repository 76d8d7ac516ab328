"""Access to the external rotating-password cache."""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Sequence

logger = logging.getLogger(__name__)


class PasswordCacheError(RuntimeError):
    """Raised when the password cache tool cannot be used."""


class PasswordCache:
    """Abstract interface for the rotating work-password cache."""

    def get_by_index(self, index: int) -> str | None:  # pragma: no cover - interface only
        """Return the password *index* days ahead, or ``None`` when out of range."""

        raise NotImplementedError

    def refresh(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_today(self) -> str | None:
        return self.get_by_index(0)


class CommandPasswordCache(PasswordCache):
    """Password cache backed by an external command.

    ``<command> get <index>`` prints the password and exits 0, or exits
    non-zero when it holds no entry for that index. ``<command> refresh``
    re-fetches upcoming passwords.
    """

    def __init__(self, command: str | Sequence[str], *, timeout: float = 30.0) -> None:
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._command:
            raise ValueError("Password cache command must not be empty")
        self._timeout = timeout

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        argv = [*self._command, *args]
        logger.debug("Running %s", shlex.join(argv))
        try:
            return subprocess.run(
                argv,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            raise PasswordCacheError(f"{self._command[0]} command unavailable") from exc
        except subprocess.TimeoutExpired as exc:
            raise PasswordCacheError(f"{self._command[0]} command timed out") from exc

    def get_by_index(self, index: int) -> str | None:
        if index < 0:
            return None
        completed = self._run("get", str(index))
        if completed.returncode != 0:
            logger.debug(
                "Password cache has no entry %d: %s", index, completed.stderr.strip()
            )
            return None
        password = completed.stdout.strip()
        return password or None

    def refresh(self) -> bool:
        completed = self._run("refresh")
        if completed.returncode != 0:
            logger.warning(
                "Password cache refresh exited with %d: %s",
                completed.returncode,
                completed.stderr.strip(),
            )
            return False
        return True


__all__ = ["CommandPasswordCache", "PasswordCache", "PasswordCacheError"]

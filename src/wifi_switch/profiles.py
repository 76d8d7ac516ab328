"""Profile discovery and stored-credential rewriting for netctl profiles."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import re
import shlex
import stat
import subprocess
import tempfile
from pathlib import Path
from typing import Sequence

from .config import ConfigStore, SwitchConfig, is_valid_profile_name, write_text_atomic

logger = logging.getLogger(__name__)

KEY_LINE_PATTERN = re.compile(r"^(?P<prefix>\s*Key=)(?P<value>.*?)(?P<ending>\r?\n)?$")
_BARE_SAFE_PATTERN = re.compile(r"[A-Za-z0-9_.,:@%+/=-]*")


class ProfileStoreError(RuntimeError):
    """Raised when the profile directory cannot be read."""


class CredentialWriteError(RuntimeError):
    """Raised when a profile's stored key could not be rewritten."""


class ProfileRegistry:
    """Resolve profile names against the configured and stored profiles."""

    def __init__(self, config: SwitchConfig, store: ConfigStore | None = None) -> None:
        self._config = config
        self._store = store

    @property
    def config(self) -> SwitchConfig:
        return self._config

    @property
    def work_profile(self) -> str:
        return self._config.work_profile

    def is_work_profile(self, name: str) -> bool:
        return name == self._config.work_profile

    def is_known_profile(self, name: str) -> bool:
        if not is_valid_profile_name(name):
            return False
        return self.is_work_profile(name) or name in self._config.other_profiles

    def list_other_profiles(self) -> list[str]:
        return [name for name in self._config.other_profiles if not self.is_work_profile(name)]

    def scan_profile_store(self) -> list[str]:
        """Return the sorted names of every profile file in the profile directory."""

        directory = self._config.profile_dir
        try:
            entries = list(directory.iterdir())
        except OSError as exc:
            raise ProfileStoreError(f"Unable to read profile directory {directory}: {exc}") from exc
        names = [entry.name for entry in entries if entry.is_file() and is_valid_profile_name(entry.name)]
        return sorted(names)

    def update_other_profiles(self) -> list[str]:
        """Replace the configured other-profiles list with the current store contents."""

        if self._store is None:
            raise RuntimeError("No configuration store available for profile updates")
        names = [name for name in self.scan_profile_store() if not self.is_work_profile(name)]
        self._config = self._store.set_other_profiles(self._config, names)
        logger.info("Other profiles updated: %s", ", ".join(names) or "(none)")
        return names


def _render_value(current: str, secret: str) -> str:
    """Format *secret* using the quoting style of the *current* value."""

    if "\n" in secret or "\r" in secret:
        raise CredentialWriteError("Secret must not contain line breaks")
    for quote in ("'", '"'):
        if len(current) >= 2 and current.startswith(quote) and current.endswith(quote):
            if quote in secret:
                raise CredentialWriteError(f"Secret must not contain {quote} for this profile")
            return f"{quote}{secret}{quote}"
    if _BARE_SAFE_PATTERN.fullmatch(secret):
        return secret
    if "'" in secret:
        raise CredentialWriteError("Secret must not contain both shell metacharacters and '")
    return f"'{secret}'"


class CredentialInjector:
    """Rewrite the ``Key=`` line of a stored profile.

    With an empty *privilege_prefix* the profile directory is written
    directly. Otherwise the new content is staged in a user-writable
    temporary file and moved into place with privileged ``install`` and
    ``mv`` commands, since the profile directory is normally owned by root.
    """

    def __init__(
        self,
        profile_dir: Path | str,
        *,
        privilege_prefix: Sequence[str] = (),
        timeout: float = 30.0,
    ) -> None:
        self._profile_dir = Path(profile_dir)
        self._privilege_prefix = list(privilege_prefix)
        self._timeout = timeout

    def profile_path(self, profile: str) -> Path:
        return self._profile_dir / profile

    def set_secret(self, profile: str, secret: str) -> None:
        """Replace the stored key of *profile* with *secret*.

        The file is rewritten through a temporary file and an atomic rename,
        so readers only ever see the old or the new key.
        """

        if not is_valid_profile_name(profile):
            raise CredentialWriteError(f"Invalid profile name: {profile!r}")
        path = self.profile_path(profile)
        lines = io.StringIO(self._read(path), newline="").readlines()

        for position, line in enumerate(lines):
            match = KEY_LINE_PATTERN.match(line)
            if match is None:
                continue
            value = _render_value(match.group("value"), secret)
            lines[position] = f"{match.group('prefix')}{value}{match.group('ending') or ''}"
            break
        else:
            raise CredentialWriteError(f"Profile {profile} has no Key= line")

        content = "".join(lines)
        if self._privilege_prefix:
            self._install_privileged(path, content)
        else:
            try:
                write_text_atomic(path, content)
            except OSError as exc:
                raise CredentialWriteError(f"Unable to write profile {path}: {exc}") from exc
        logger.debug("Updated stored key for profile %s", profile)

    def _run(self, *args: str) -> bytes:
        argv = [*self._privilege_prefix, *args]
        logger.debug("Running %s", shlex.join(argv))
        try:
            completed = subprocess.run(argv, check=True, capture_output=True, timeout=self._timeout)
        except FileNotFoundError as exc:
            raise CredentialWriteError(f"{argv[0]} command unavailable") from exc
        except subprocess.TimeoutExpired as exc:
            raise CredentialWriteError(f"{shlex.join(argv)} timed out") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or b"").decode("utf-8", "replace").strip() or str(exc)
            raise CredentialWriteError(detail) from exc
        return completed.stdout

    def _read(self, path: Path) -> str:
        try:
            with path.open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except PermissionError as exc:
            if not self._privilege_prefix:
                raise CredentialWriteError(f"Unable to read profile {path}: {exc}") from exc
        except OSError as exc:
            raise CredentialWriteError(f"Unable to read profile {path}: {exc}") from exc
        try:
            return self._run("cat", str(path)).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CredentialWriteError(f"Profile {path} is not valid UTF-8") from exc

    def _install_privileged(self, path: Path, content: str) -> None:
        try:
            status = path.stat()
            fd, staged_name = tempfile.mkstemp(prefix=f"wifi-switch-{path.name}.", suffix=".tmp")
        except OSError as exc:
            raise CredentialWriteError(f"Unable to stage profile {path}: {exc}") from exc
        target = path.with_name(f".{path.name}.wifi-switch.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            self._run(
                "install",
                "-m",
                format(stat.S_IMODE(status.st_mode), "o"),
                "-o",
                str(status.st_uid),
                "-g",
                str(status.st_gid),
                staged_name,
                str(target),
            )
            try:
                self._run("mv", "-f", str(target), str(path))
            except CredentialWriteError:
                try:
                    self._run("rm", "-f", str(target))
                except CredentialWriteError as cleanup_exc:
                    logger.warning("Unable to remove staged profile %s: %s", target, cleanup_exc)
                raise
        except OSError as exc:
            raise CredentialWriteError(f"Unable to stage profile {path}: {exc}") from exc
        finally:
            with contextlib.suppress(OSError):
                os.unlink(staged_name)


__all__ = [
    "CredentialInjector",
    "CredentialWriteError",
    "ProfileRegistry",
    "ProfileStoreError",
]

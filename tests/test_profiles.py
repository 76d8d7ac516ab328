import os
import shutil
import subprocess
from pathlib import Path

import pytest

from wifi_switch import profiles
from wifi_switch.config import ConfigStore, SwitchConfig
from wifi_switch.profiles import (
    CredentialInjector,
    CredentialWriteError,
    ProfileRegistry,
    ProfileStoreError,
)

WORK_PROFILE_TEXT = (
    "Description='Office network'\n"
    "Interface=wlan0\n"
    "Connection=wireless\n"
    "Security=wpa\n"
    "ESSID=CorpNet\n"
    "IP=dhcp\n"
    "Key='oldsecret'\n"
    "# ExtraKey=leave-me\n"
)


def _store_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "netctl"
    directory.mkdir()
    for name in ("work", "home", "cafe"):
        (directory / name).write_text("Key=x\n")
    (directory / "examples").mkdir()
    (directory / "home.bak~").write_text("")
    (directory / "hooks").mkdir()
    return directory


def test_registry_membership(tmp_path: Path) -> None:
    config = SwitchConfig(work_profile="work", other_profiles=("home", "cafe"))
    registry = ProfileRegistry(config)

    assert registry.is_work_profile("work")
    assert not registry.is_work_profile("home")
    assert registry.is_known_profile("work")
    assert registry.is_known_profile("cafe")
    assert not registry.is_known_profile("office")
    assert not registry.is_known_profile("")
    assert registry.list_other_profiles() == ["home", "cafe"]


def test_list_other_profiles_excludes_work(tmp_path: Path) -> None:
    registry = ProfileRegistry(SwitchConfig(work_profile="work", other_profiles=("home", "work")))
    assert registry.list_other_profiles() == ["home"]


def test_scan_profile_store_lists_profile_files(tmp_path: Path) -> None:
    directory = _store_dir(tmp_path)
    registry = ProfileRegistry(SwitchConfig(profile_dir=directory))
    assert registry.scan_profile_store() == ["cafe", "home", "work"]


def test_scan_missing_directory(tmp_path: Path) -> None:
    registry = ProfileRegistry(SwitchConfig(profile_dir=tmp_path / "absent"))
    with pytest.raises(ProfileStoreError):
        registry.scan_profile_store()


def test_update_other_profiles_is_idempotent(tmp_path: Path) -> None:
    directory = _store_dir(tmp_path)
    config_path = tmp_path / "config.json"
    store = ConfigStore(config_path)
    registry = ProfileRegistry(SwitchConfig(profile_dir=directory), store)

    assert registry.update_other_profiles() == ["cafe", "home"]
    first = config_path.read_bytes()
    assert registry.is_known_profile("home")

    again = ProfileRegistry(store.load(), store)
    assert again.update_other_profiles() == ["cafe", "home"]
    assert config_path.read_bytes() == first


def test_update_without_store_fails(tmp_path: Path) -> None:
    registry = ProfileRegistry(SwitchConfig(profile_dir=_store_dir(tmp_path)))
    with pytest.raises(RuntimeError):
        registry.update_other_profiles()


def test_set_secret_replaces_only_key_line(tmp_path: Path) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)
    injector = CredentialInjector(tmp_path)

    injector.set_secret("work", "hunter2")

    expected = WORK_PROFILE_TEXT.replace("Key='oldsecret'", "Key='hunter2'")
    assert profile.read_text() == expected


def test_set_secret_is_idempotent(tmp_path: Path) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)
    injector = CredentialInjector(tmp_path)

    injector.set_secret("work", "ABCD1234")
    once = profile.read_bytes()
    injector.set_secret("work", "ABCD1234")

    assert profile.read_bytes() == once
    assert [name for name in os.listdir(tmp_path)] == ["work"]


def test_set_secret_keeps_bare_and_crlf_lines(tmp_path: Path) -> None:
    profile = tmp_path / "home"
    profile.write_bytes(b"ESSID=Home\r\n  Key=old\r\nIP=dhcp\r\n")

    CredentialInjector(tmp_path).set_secret("home", "new")

    assert profile.read_bytes() == b"ESSID=Home\r\n  Key=new\r\nIP=dhcp\r\n"


def test_set_secret_quotes_bare_value_when_needed(tmp_path: Path) -> None:
    profile = tmp_path / "home"
    profile.write_text("Key=old\n")

    CredentialInjector(tmp_path).set_secret("home", "two words")

    assert profile.read_text() == "Key='two words'\n"


def test_set_secret_preserves_mode(tmp_path: Path) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)
    profile.chmod(0o640)

    CredentialInjector(tmp_path).set_secret("work", "hunter2")

    assert profile.stat().st_mode & 0o777 == 0o640


@pytest.mark.parametrize("secret", ["line\nbreak", "it's"])
def test_set_secret_rejects_unrepresentable_secret(tmp_path: Path, secret: str) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)

    with pytest.raises(CredentialWriteError):
        CredentialInjector(tmp_path).set_secret("work", secret)

    assert profile.read_text() == WORK_PROFILE_TEXT


def test_set_secret_requires_key_line(tmp_path: Path) -> None:
    (tmp_path / "open").write_text("Security=none\n")
    with pytest.raises(CredentialWriteError):
        CredentialInjector(tmp_path).set_secret("open", "secret")


def test_set_secret_missing_profile(tmp_path: Path) -> None:
    with pytest.raises(CredentialWriteError):
        CredentialInjector(tmp_path).set_secret("ghost", "secret")


def test_failed_replace_keeps_previous_secret(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)

    def failing_replace(src: str, dst: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(profiles.os, "replace", failing_replace)

    with pytest.raises(CredentialWriteError):
        CredentialInjector(tmp_path).set_secret("work", "hunter2")

    assert profile.read_text() == WORK_PROFILE_TEXT
    assert os.listdir(tmp_path) == ["work"]


def test_scan_ignores_names_with_trailing_newline(tmp_path: Path) -> None:
    directory = _store_dir(tmp_path)
    (directory / "lab\n").write_text("Key=x\n")

    registry = ProfileRegistry(SwitchConfig(profile_dir=directory))

    assert registry.scan_profile_store() == ["cafe", "home", "work"]


class RecordingRunner:
    """Stand-in for ``subprocess.run`` that performs install/mv/rm locally."""

    def __init__(self, *, fail_on: str | None = None) -> None:
        self.commands: list[list[str]] = []
        self.fail_on = fail_on

    def __call__(self, argv: list[str], **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        self.commands.append(list(argv))
        assert argv[0] == "sudo"
        name, args = argv[1], argv[2:]
        if name == self.fail_on:
            raise subprocess.CalledProcessError(1, argv, b"", b"Operation not permitted")
        if name == "install":
            source, target = args[-2], args[-1]
            shutil.copyfile(source, target)
            os.chmod(target, int(args[args.index("-m") + 1], 8))
        elif name == "mv":
            os.replace(args[-2], args[-1])
        elif name == "rm":
            Path(args[-1]).unlink(missing_ok=True)
        elif name == "cat":
            return subprocess.CompletedProcess(argv, 0, Path(args[-1]).read_bytes(), b"")
        return subprocess.CompletedProcess(argv, 0, b"", b"")


def test_set_secret_installs_through_privilege_prefix(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)
    profile.chmod(0o640)
    runner = RecordingRunner()
    monkeypatch.setattr(profiles.subprocess, "run", runner)

    CredentialInjector(tmp_path, privilege_prefix=["sudo"]).set_secret("work", "hunter2")

    assert profile.read_text() == WORK_PROFILE_TEXT.replace("Key='oldsecret'", "Key='hunter2'")
    assert profile.stat().st_mode & 0o777 == 0o640
    install, move = runner.commands
    staged, target = install[-2], install[-1]
    assert install[:4] == ["sudo", "install", "-m", "640"]
    assert install[4:8] == ["-o", str(profile.stat().st_uid), "-g", str(profile.stat().st_gid)]
    assert target == str(tmp_path / ".work.wifi-switch.tmp")
    assert move == ["sudo", "mv", "-f", target, str(profile)]
    assert not os.path.exists(staged)
    assert os.listdir(tmp_path) == ["work"]


def test_privileged_move_failure_keeps_previous_secret(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)
    runner = RecordingRunner(fail_on="mv")
    monkeypatch.setattr(profiles.subprocess, "run", runner)

    with pytest.raises(CredentialWriteError, match="Operation not permitted"):
        CredentialInjector(tmp_path, privilege_prefix=["sudo"]).set_secret("work", "hunter2")

    assert profile.read_text() == WORK_PROFILE_TEXT
    assert [command[1] for command in runner.commands] == ["install", "mv", "rm"]
    assert os.listdir(tmp_path) == ["work"]


def test_unreadable_profile_is_read_through_privilege_prefix(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    profile = tmp_path / "work"
    profile.write_text(WORK_PROFILE_TEXT)
    runner = RecordingRunner()
    monkeypatch.setattr(profiles.subprocess, "run", runner)
    original_open = Path.open

    def guarded_open(self: Path, *args: object, **kwargs: object):
        if self == profile:
            raise PermissionError(13, "Permission denied", str(self))
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", guarded_open)

    CredentialInjector(tmp_path, privilege_prefix=["sudo"]).set_secret("work", "hunter2")

    assert runner.commands[0] == ["sudo", "cat", str(profile)]
    with open(profile, encoding="utf-8") as handle:
        assert "Key='hunter2'" in handle.read()

"""Command-line entry point for wifi-switch."""
from __future__ import annotations

import contextlib
import getpass
import logging
import sys
from dataclasses import dataclass
from typing import Callable, Sequence

from .commands import (
    CommandRequest,
    ConnectCommand,
    DisconnectCommand,
    HelpCommand,
    InvalidCommand,
    RestartCommand,
    ShowPasswordCommand,
    UpdateProfilesCommand,
    parse_arguments,
)
from .config import ConfigError, ConfigStore, SwitchConfig
from .network import HardwareAddressRandomizer, NetctlBackend, NetworkBackend, NetworkError
from .orchestrator import ConnectionOrchestrator
from .password_cache import CommandPasswordCache, PasswordCache, PasswordCacheError
from .profiles import CredentialInjector, ProfileRegistry, ProfileStoreError
from .readiness import HTTPReachabilityProbe, NetworkReadinessPoller
from .version import APP_VERSION

PROG = "wifi-switch"

USAGE = (
    f"usage: {PROG} [-s|show <index|today|tomorrow>] [-r|restart <name>] "
    "[-d|disconnect [<name>]] [-u|update] [-h|--help] [<profile>]"
)

HELP_TEXT = """\
Switch between netctl wireless profiles.

  <profile>                 stop every profile, reset the adapter and connect to <profile>
  -s, show <n|today|tomorrow>
                            print a cached work password (today = 0, tomorrow = 1)
  -r, restart <name>        restart profile <name>
  -d, disconnect [<name>]   stop profile <name>, or every profile
  -u, update                rescan the profile directory and save the other profiles
  -h, --help                show this help and exit"""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


@dataclass(slots=True)
class Services:
    """External collaborators used while dispatching a command."""

    backend: NetworkBackend
    cache: PasswordCache
    injector: CredentialInjector
    poller: NetworkReadinessPoller
    randomizer: HardwareAddressRandomizer | None = None
    prompt: Callable[[str], str] = getpass.getpass


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_services(config: SwitchConfig, stack: contextlib.ExitStack) -> Services:
    """Create the real netctl, macchanger, cache and probe collaborators."""

    backend = NetctlBackend(
        privilege_prefix=config.privilege_prefix,
        timeout=config.command_timeout,
    )
    probe = stack.enter_context(
        HTTPReachabilityProbe(config.probe_host, timeout=config.probe_timeout)
    )
    poller = NetworkReadinessPoller(
        config.interface,
        adapter_check=backend.link_is_up,
        probe=probe,
        poll_interval=config.poll_interval,
    )
    randomizer = None
    if config.randomize_mac:
        randomizer = HardwareAddressRandomizer(
            options=config.macchanger_options,
            privilege_prefix=config.privilege_prefix,
            timeout=config.command_timeout,
        )
    return Services(
        backend=backend,
        cache=CommandPasswordCache(config.password_cache_command, timeout=config.command_timeout),
        injector=CredentialInjector(
            config.profile_dir,
            privilege_prefix=config.privilege_prefix,
            timeout=config.command_timeout,
        ),
        poller=poller,
        randomizer=randomizer,
    )


def format_help(registry: ProfileRegistry) -> str:
    profiles = [f"{registry.work_profile} (work)", *registry.list_other_profiles()]
    return f"{USAGE}\n\n{HELP_TEXT}\n\nKnown profiles: {', '.join(profiles)}\n{PROG} {APP_VERSION}"


def format_password(index: int, password: str) -> str:
    if index == 0:
        return f"Daily work password is: {password}"
    if index == 1:
        return f"Tomorrow's work password is: {password}"
    return f"Work password {index} is: {password}"


def _error(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def dispatch(request: CommandRequest, registry: ProfileRegistry, services: Services) -> int:
    """Carry out *request* and return the process exit status."""

    if isinstance(request, HelpCommand):
        print(format_help(registry))
        return EXIT_OK

    if isinstance(request, InvalidCommand):
        _error(request.reason)
        print(f"Run '{PROG} --help' for usage.", file=sys.stderr)
        return EXIT_FAILURE

    if isinstance(request, ShowPasswordCommand):
        try:
            password = services.cache.get_by_index(request.index)
        except PasswordCacheError as exc:
            _error(f"Password cache unavailable: {exc}")
            return EXIT_FAILURE
        if password is None:
            print(f"Password index: {request.index} is out of range. Cannot display password")
        else:
            print(format_password(request.index, password))
        return EXIT_OK

    if isinstance(request, UpdateProfilesCommand):
        try:
            names = registry.update_other_profiles()
        except (ProfileStoreError, ConfigError) as exc:
            _error(str(exc))
            return EXIT_FAILURE
        print(f"Other profiles: {', '.join(names) if names else '(none)'}")
        return EXIT_OK

    if isinstance(request, RestartCommand):
        try:
            services.backend.restart(request.profile)
        except NetworkError as exc:
            _error(f"Unable to restart {request.profile}: {exc}")
            return EXIT_FAILURE
        print(f"Restarted {request.profile}")
        return EXIT_OK

    if isinstance(request, DisconnectCommand):
        try:
            if request.profile is None:
                services.backend.stop_all()
            else:
                services.backend.disconnect(request.profile)
        except NetworkError as exc:
            _error(f"Unable to disconnect: {exc}")
            return EXIT_FAILURE
        print(f"Stopped {request.profile or 'all profiles'}")
        return EXIT_OK

    if isinstance(request, ConnectCommand):
        orchestrator = ConnectionOrchestrator(
            registry.config,
            backend=services.backend,
            registry=registry,
            injector=services.injector,
            cache=services.cache,
            poller=services.poller,
            randomizer=services.randomizer,
            prompt=services.prompt,
        )
        attempt = orchestrator.connect(request.profile)
        return EXIT_OK if attempt.succeeded else EXIT_FAILURE

    raise TypeError(f"Unsupported command request: {request!r}")


def run(
    argv: Sequence[str] | None = None,
    *,
    store: ConfigStore | None = None,
    services: Services | None = None,
) -> int:
    """Execute wifi-switch with *argv* arguments."""

    if argv is None:
        argv = sys.argv[1:]
    store = store or ConfigStore()
    try:
        config = store.load()
    except ConfigError as exc:
        _error(str(exc))
        return EXIT_FAILURE
    configure_logging(config.log_level)

    registry = ProfileRegistry(config, store)
    request = parse_arguments(argv, registry.is_known_profile)

    with contextlib.ExitStack() as stack:
        if services is None:
            services = build_services(config, stack)
        try:
            return dispatch(request, registry, services)
        except KeyboardInterrupt:
            print("Interrupted.", file=sys.stderr)
            return EXIT_INTERRUPTED


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by the ``wifi-switch`` console script."""

    return run(argv)


__all__ = [
    "Services",
    "build_services",
    "dispatch",
    "format_help",
    "format_password",
    "main",
    "run",
]


if __name__ == "__main__":  # pragma: no cover - module behaviour
    sys.exit(main())

"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from wsldockctl.config import GuestConfig
from wsldockctl.guest.accounts import GroupMembershipSpec, GroupMembershipStatus

Completed = subprocess.CompletedProcess[object]
Handler = Callable[[list[str], object], Completed]


def _strip_sudo(args: Sequence[str]) -> list[str]:
    command = list(args)
    if command and command[0] == "sudo":
        command = command[1:]
        while command and "=" in command[0] and not command[0].startswith("-"):
            command = command[1:]
    return command


def completed(
    args: Sequence[str],
    *,
    returncode: int = 0,
    stdout: str | bytes = "",
    stderr: str | bytes = "",
) -> subprocess.CompletedProcess[object]:
    """Build a ``CompletedProcess`` for a scripted command."""
    return subprocess.CompletedProcess(list(args), returncode, stdout=stdout, stderr=stderr)


class ScriptedExecutor:
    """Stand-in for ``subprocess.run`` answering by command prefix.

    The longest registered prefix wins; unknown commands succeed silently.
    ``sudo`` and its ``VAR=value`` assignments are ignored when matching.
    """

    def __init__(self) -> None:
        """Start with no scripted responses."""
        self.calls: list[list[str]] = []
        self.inputs: list[object] = []
        self._handlers: dict[tuple[str, ...], Handler] = {}

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str | bytes = "",
        stderr: str | bytes = "",
        handler: Handler | None = None,
        missing: bool = False,
    ) -> None:
        """Register the response for commands starting with *prefix*."""
        if handler is None:

            def _canned(command: list[str], _input: object) -> subprocess.CompletedProcess[object]:
                if missing:
                    raise FileNotFoundError(command[0])
                return completed(command, returncode=returncode, stdout=stdout, stderr=stderr)

            handler = _canned
        self._handlers[tuple(prefix)] = handler

    def __call__(
        self,
        args: Sequence[str],
        *,
        input: str | bytes | None = None,  # noqa: A002 - mirrors subprocess.run
        text: bool = True,
        capture_output: bool = True,
        env: object = None,
    ) -> subprocess.CompletedProcess[object]:
        """Record the call and return the scripted result."""
        self.calls.append(list(args))
        self.inputs.append(input)
        command = _strip_sudo(args)
        best: tuple[str, ...] | None = None
        for prefix in self._handlers:
            if tuple(command[: len(prefix)]) != prefix:
                continue
            if best is None or len(prefix) > len(best):
                best = prefix
        if best is None:
            result = completed(command)
        else:
            result = self._handlers[best](command, input)
        if not text:
            stdout = result.stdout
            stderr = result.stderr
            if isinstance(stdout, str):
                stdout = stdout.encode("utf-8")
            if isinstance(stderr, str):
                stderr = stderr.encode("utf-8")
            result = completed(command, returncode=result.returncode, stdout=stdout, stderr=stderr)
        return result

    def commands(self) -> list[list[str]]:
        """Return every recorded command with any sudo prefix removed."""
        return [_strip_sudo(call) for call in self.calls]

    def ran(self, *prefix: str) -> bool:
        """Return ``True`` when a command starting with *prefix* was executed."""
        return any(tuple(call[: len(prefix)]) == prefix for call in self.commands())


@pytest.fixture
def scripted() -> ScriptedExecutor:
    """Return a fresh scripted executor."""
    return ScriptedExecutor()


@dataclass
class FakeGuest:
    """Stateful model of an Ubuntu guest driven through a scripted executor."""

    root: Path
    installed: set[str] = field(default_factory=set)
    upgrades: list[str] = field(default_factory=list)
    members: set[str] = field(default_factory=set)
    group_exists: bool = True
    fail_update: bool = False
    proc_version: str = (
        "Linux version 5.15.153.1-microsoft-standard-WSL2 (gcc) #1 SMP"
    )

    def __post_init__(self) -> None:
        """Create the fake filesystem layout."""
        (self.root / "etc").mkdir(parents=True, exist_ok=True)
        (self.root / "home").mkdir(parents=True, exist_ok=True)
        (self.root / "apt" / "sources.list.d").mkdir(parents=True, exist_ok=True)
        self.proc_path.write_text(self.proc_version, encoding="utf-8")

    @property
    def proc_path(self) -> Path:
        """Return the fake ``/proc/version`` path."""
        return self.root / "proc_version"

    @property
    def home(self) -> Path:
        """Return the invoking user's home directory."""
        return self.root / "home"

    def config(self) -> GuestConfig:
        """Return a guest config pointing at the fake filesystem."""
        return GuestConfig(
            wsl_conf=self.root / "etc" / "wsl.conf",
            proc_version=self.proc_path,
            keyrings_dir=self.root / "keyrings",
            sources_file=self.root / "apt" / "sources.list.d" / "docker.list",
        )

    def membership(self, spec: GroupMembershipSpec) -> GroupMembershipStatus:
        """Report the fake group database state."""
        return GroupMembershipStatus(
            user_exists=True,
            group_exists=self.group_exists,
            is_member=spec.user in self.members,
        )

    def install(self, executor: ScriptedExecutor) -> ScriptedExecutor:
        """Register every handler the guest pipeline needs on *executor*."""
        executor.on("dpkg-query", handler=self._dpkg_query)
        executor.on("dpkg", "--print-architecture", stdout="amd64\n")
        executor.on("lsb_release", "-cs", stdout="jammy\n")
        executor.on("apt-get", "update", handler=self._apt_update)
        executor.on("apt-get", "-s", "upgrade", handler=self._apt_simulate)
        executor.on("apt-get", "upgrade", handler=self._apt_upgrade)
        executor.on("apt-get", "install", handler=self._apt_install)
        executor.on("apt-get", "remove", handler=self._apt_remove)
        executor.on("install", "-m", handler=self._mkdir)
        executor.on("curl", stdout=b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
        executor.on("gpg", handler=self._dearmor)
        executor.on("docker", "--version", handler=self._docker_version)
        executor.on("docker", "compose", "version", handler=self._compose_version)
        executor.on("usermod", handler=self._usermod)
        executor.on("groupadd", handler=self._groupadd)
        return executor

    # ------------------------------------------------------------------
    def _dpkg_query(self, command: list[str], _input: object) -> Completed:
        package = command[-1]
        if package in self.installed:
            return completed(command, stdout="install ok installed")
        return completed(command, returncode=1, stderr=f"no packages found matching {package}")

    def _apt_update(self, command: list[str], _input: object) -> Completed:
        if self.fail_update:
            return completed(command, returncode=100, stderr="E: Failed to fetch")
        return completed(command)

    def _apt_simulate(self, command: list[str], _input: object) -> Completed:
        lines = [
            f"Inst {name} [1.0] (1.1 Ubuntu:22.04/jammy-updates [amd64])"
            for name in self.upgrades
        ]
        return completed(command, stdout="\n".join(lines))

    def _apt_upgrade(self, command: list[str], _input: object) -> Completed:
        self.upgrades.clear()
        return completed(command)

    def _apt_install(self, command: list[str], _input: object) -> Completed:
        self.installed.update(arg for arg in command[2:] if not arg.startswith("-"))
        return completed(command)

    def _apt_remove(self, command: list[str], _input: object) -> Completed:
        self.installed.difference_update(command[2:])
        return completed(command)

    def _mkdir(self, command: list[str], _input: object) -> Completed:
        Path(command[-1]).mkdir(parents=True, exist_ok=True)
        return completed(command)

    def _dearmor(self, command: list[str], data: object) -> Completed:
        target = Path(command[command.index("-o") + 1])
        target.write_bytes(data if isinstance(data, bytes) else b"")
        return completed(command)

    def _docker_version(self, command: list[str], _input: object) -> Completed:
        if "docker-ce" not in self.installed:
            raise FileNotFoundError(command[0])
        return completed(command, stdout="Docker version 27.3.1, build ce12230\n")

    def _compose_version(
        self, command: list[str], _input: object
    ) -> subprocess.CompletedProcess[object]:
        if "docker-compose-plugin" not in self.installed:
            return completed(command, returncode=1, stderr="'compose' is not a docker command.")
        return completed(command, stdout="Docker Compose version v2.29.7\n")

    def _usermod(self, command: list[str], _input: object) -> Completed:
        self.members.add(command[-1])
        return completed(command)

    def _groupadd(self, command: list[str], _input: object) -> Completed:
        self.group_exists = True
        return completed(command)


@pytest.fixture
def fake_guest(tmp_path: Path) -> FakeGuest:
    """Return a fake guest rooted in the temporary directory."""
    return FakeGuest(root=tmp_path / "guest")

"""Tests for the systemd provider."""
from __future__ import annotations

import pytest
from conftest import ScriptedExecutor

from wsldockctl.commands import CommandRunner
from wsldockctl.providers import HEALTHY_SYSTEM_STATES, SystemdError, SystemdProvider


@pytest.fixture
def provider(scripted: ScriptedExecutor) -> SystemdProvider:
    """Return a provider running through sudo against the scripted executor."""
    return SystemdProvider(CommandRunner(use_sudo=True, executor=scripted))


@pytest.mark.parametrize(
    ("stdout", "returncode", "expected", "running"),
    [
        ("running\n", 0, "running", True),
        ("degraded\n", 1, "degraded", True),
        ("starting\n", 1, "starting", False),
        ("offline\n", 1, "offline", False),
        ("", 1, "offline", False),
    ],
)
def test_system_state(
    provider: SystemdProvider,
    scripted: ScriptedExecutor,
    stdout: str,
    returncode: int,
    expected: str,
    running: bool,
) -> None:
    """Degraded counts as running; an empty answer means systemd is absent."""
    scripted.on("systemctl", "is-system-running", stdout=stdout, returncode=returncode)

    assert provider.system_state() == expected
    assert (expected in HEALTHY_SYSTEM_STATES) is running


def test_system_state_without_systemctl(
    provider: SystemdProvider, scripted: ScriptedExecutor
) -> None:
    scripted.on("systemctl", missing=True)

    assert provider.system_state() == "offline"


def test_queries_are_not_privileged(provider: SystemdProvider, scripted: ScriptedExecutor) -> None:
    scripted.on("systemctl", "is-active", returncode=3)

    assert provider.is_active("docker.service") is False
    assert scripted.calls == [
        ["systemctl", "is-active", "--quiet", "docker.service"],
    ]


def test_enable_and_start_use_sudo(provider: SystemdProvider, scripted: ScriptedExecutor) -> None:
    provider.enable("docker.service")
    provider.start("docker.service")

    assert scripted.calls == [
        ["sudo", "systemctl", "enable", "docker.service"],
        ["sudo", "systemctl", "start", "docker.service"],
    ]
    assert len(provider.runner.mutations) == 2


def test_start_failure_raises_systemd_error(
    provider: SystemdProvider, scripted: ScriptedExecutor
) -> None:
    """Checked failures carry a remediation pointing at the unit status."""
    scripted.on("systemctl", "start", returncode=1, stderr="Job for docker.service failed.")

    with pytest.raises(SystemdError) as excinfo:
        provider.start("docker.service")

    assert "Job for docker.service failed" in str(excinfo.value)
    assert excinfo.value.remediation is not None


def test_unchecked_failure_returns_result(
    provider: SystemdProvider, scripted: ScriptedExecutor
) -> None:
    scripted.on("systemctl", "enable", returncode=1)

    result = provider.enable("docker.service", check=False)

    assert result.returncode == 1

"""Tests for the shared command runner."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import ScriptedExecutor

from wsldockctl import commands
from wsldockctl.commands import CommandError, CommandRunner


def test_privileged_commands_use_sudo_with_env(scripted: ScriptedExecutor) -> None:
    """Non-root runners prefix privileged commands and pass env inline."""
    runner = CommandRunner(use_sudo=True, executor=scripted)

    runner.run(
        ["apt-get", "install", "-y", "curl"],
        privileged=True,
        mutating=True,
        env={"DEBIAN_FRONTEND": "noninteractive"},
    )
    runner.run(["dpkg-query", "-W", "curl"], check=False)

    assert scripted.calls == [
        ["sudo", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "curl"],
        ["dpkg-query", "-W", "curl"],
    ]
    assert [record.args[2] for record in runner.mutations] == ["apt-get"]


def test_root_runner_skips_sudo(scripted: ScriptedExecutor) -> None:
    """Root runners execute privileged commands directly."""
    runner = CommandRunner(use_sudo=False, executor=scripted)

    runner.run(["usermod", "-aG", "docker", "alice"], privileged=True, mutating=True)

    assert scripted.calls == [["usermod", "-aG", "docker", "alice"]]


def test_failure_raises_command_error_with_summary(scripted: ScriptedExecutor) -> None:
    """Non-zero exits raise CommandError naming the command and stderr."""
    scripted.on("apt-get", returncode=100, stderr="E: Unable to locate package docker-ce")
    runner = CommandRunner(executor=scripted)

    with pytest.raises(CommandError) as excinfo:
        runner.run(["apt-get", "install", "-y", "docker-ce"])

    assert excinfo.value.returncode == 100
    assert "apt-get install -y failed (exit 100)" in str(excinfo.value)
    assert "Unable to locate package" in str(excinfo.value)


def test_missing_binary_raises_command_error(scripted: ScriptedExecutor) -> None:
    """A missing executable is reported as a CommandError."""
    scripted.on("docker", missing=True)
    runner = CommandRunner(executor=scripted)

    with pytest.raises(CommandError, match="docker not found"):
        runner.run(["docker", "--version"], check=False)


def test_dry_run_skips_mutations_and_refreshes(scripted: ScriptedExecutor) -> None:
    """Dry-run executes probes only and does not count refreshes as mutations."""
    runner = CommandRunner(dry_run=True, executor=scripted)

    runner.run(["dpkg-query", "-W", "curl"], check=False)
    runner.run(["apt-get", "update"], privileged=True, refresh=True)
    result = runner.run(["apt-get", "install", "-y", "curl"], privileged=True, mutating=True)

    assert scripted.calls == [["dpkg-query", "-W", "curl"]]
    assert result.returncode == 0
    assert len(runner.history) == 3
    assert [record.args for record in runner.mutations] == [("apt-get", "install", "-y", "curl")]
    assert all(record.dry_run for record in runner.history[1:])


def test_refresh_is_not_a_mutation(scripted: ScriptedExecutor) -> None:
    """Package index refreshes run but leave the mutation list empty."""
    runner = CommandRunner(executor=scripted)

    runner.run(["apt-get", "update"], privileged=True, refresh=True)

    assert scripted.ran("apt-get", "update")
    assert runner.mutations == []


def test_write_copy_remove_locally(tmp_path: Path) -> None:
    """File helpers act directly on disk when no escalation is needed."""
    runner = CommandRunner()
    target = tmp_path / "wsl.conf"

    runner.write_text(target, "[boot]\n", mode=0o644)
    runner.copy_file(target, tmp_path / "wsl.conf.backup")
    runner.remove_file(target)
    runner.remove_file(target)

    assert not target.exists()
    assert (tmp_path / "wsl.conf.backup").read_text(encoding="utf-8") == "[boot]\n"
    assert [record.args[0] for record in runner.mutations] == [
        "<write>",
        "<copy>",
        "<remove>",
        "<remove>",
    ]


def test_write_text_uses_sudo_tee(scripted: ScriptedExecutor, tmp_path: Path) -> None:
    """Privileged writes go through sudo tee and chmod."""
    runner = CommandRunner(use_sudo=True, executor=scripted)
    target = tmp_path / "docker.list"

    runner.write_text(target, "deb x\n", privileged=True, mode=0o644)

    assert scripted.calls == [
        ["sudo", "tee", str(target)],
        ["sudo", "chmod", "644", str(target)],
    ]
    assert scripted.inputs[0] == "deb x\n"


def test_dry_run_file_helpers_do_not_touch_disk(tmp_path: Path) -> None:
    """Dry-run records file changes without performing them."""
    runner = CommandRunner(dry_run=True)
    target = tmp_path / "wsl.conf"

    runner.write_text(target, "[boot]\n")

    assert not target.exists()
    assert runner.mutations[0].dry_run is True


def test_default_executor_is_resolved_at_call_time(
    monkeypatch: pytest.MonkeyPatch,
    scripted: ScriptedExecutor,
) -> None:
    """Runners without an executor use the module-level default."""
    monkeypatch.setattr(commands, "_default_executor", scripted)

    CommandRunner().run(["lsb_release", "-cs"])

    assert scripted.calls == [["lsb_release", "-cs"]]


def test_for_current_user_detects_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Root does not need sudo; everyone else does."""
    monkeypatch.setattr(commands.os, "geteuid", lambda: 0, raising=False)
    assert CommandRunner.for_current_user().use_sudo is False

    monkeypatch.setattr(commands.os, "geteuid", lambda: 1000, raising=False)
    assert CommandRunner.for_current_user(dry_run=True).use_sudo is True

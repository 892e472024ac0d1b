"""Tests for Docker apt repository registration."""
from __future__ import annotations

import pytest
from conftest import FakeGuest, ScriptedExecutor

from wsldockctl.commands import CommandRunner
from wsldockctl.guest.apt import AptProvider
from wsldockctl.guest.repository import DockerRepository, RepositoryError


def _repository(
    fake_guest: FakeGuest, scripted: ScriptedExecutor, *, dry_run: bool = False
) -> tuple[DockerRepository, CommandRunner]:
    fake_guest.install(scripted)
    runner = CommandRunner(executor=scripted, dry_run=dry_run)
    return DockerRepository(runner, AptProvider(runner), fake_guest.config()), runner


def test_definition_line(fake_guest: FakeGuest, scripted: ScriptedExecutor) -> None:
    repository, _runner = _repository(fake_guest, scripted)
    key = fake_guest.config().key_path

    assert repository.definition_line("amd64", "jammy") == (
        f"deb [arch=amd64 signed-by={key}] https://download.docker.com/linux/ubuntu jammy stable"
    )


def test_register_writes_key_and_sources(
    fake_guest: FakeGuest, scripted: ScriptedExecutor
) -> None:
    """Registration de-armors the key, writes the line and refreshes apt."""
    repository, _runner = _repository(fake_guest, scripted)
    config = fake_guest.config()
    line = repository.definition_line("amd64", "jammy")

    assert repository.is_registered(line) is False
    repository.register(line)

    assert config.key_path.read_bytes().startswith(b"-----BEGIN PGP")
    assert config.sources_file.read_text(encoding="utf-8") == line + "\n"
    assert oct(config.sources_file.stat().st_mode & 0o777) == "0o644"
    assert scripted.ran("gpg", "--batch", "--yes", "--dearmor", "-o", str(config.key_path))
    assert scripted.ran("apt-get", "update")
    assert repository.is_registered(line) is True


def test_stale_line_is_not_registered(fake_guest: FakeGuest, scripted: ScriptedExecutor) -> None:
    """A sources file for another codename needs rewriting."""
    repository, _runner = _repository(fake_guest, scripted)
    repository.register(repository.definition_line("amd64", "focal"))

    assert repository.is_registered(repository.definition_line("amd64", "jammy")) is False


def test_failed_update_rolls_back(fake_guest: FakeGuest, scripted: ScriptedExecutor) -> None:
    """Neither the key nor the sources file survives a failed registration."""
    fake_guest.fail_update = True
    repository, _runner = _repository(fake_guest, scripted)
    config = fake_guest.config()

    with pytest.raises(RepositoryError) as excinfo:
        repository.register(repository.definition_line("amd64", "jammy"))

    assert not config.key_path.exists()
    assert not config.sources_file.exists()
    assert excinfo.value.remediation is not None
    assert config.key_url in excinfo.value.remediation


def test_empty_key_download_fails(fake_guest: FakeGuest, scripted: ScriptedExecutor) -> None:
    repository, _runner = _repository(fake_guest, scripted)
    scripted.on("curl", stdout=b"")

    with pytest.raises(RepositoryError, match="empty signing key"):
        repository.register(repository.definition_line("amd64", "jammy"))

    assert not scripted.ran("gpg")


def test_register_dry_run_touches_nothing(
    fake_guest: FakeGuest, scripted: ScriptedExecutor
) -> None:
    repository, runner = _repository(fake_guest, scripted, dry_run=True)
    config = fake_guest.config()

    repository.register(repository.definition_line("amd64", "jammy"))

    assert not config.key_path.exists()
    assert not config.sources_file.exists()
    assert all(record.dry_run for record in runner.mutations)


def test_failed_reregistration_keeps_existing_files(
    fake_guest: FakeGuest, scripted: ScriptedExecutor
) -> None:
    """A network failure leaves a working registration as it was."""
    repository, _runner = _repository(fake_guest, scripted)
    config = fake_guest.config()
    repository.register(repository.definition_line("amd64", "focal"))
    key = config.key_path.read_bytes()
    sources = config.sources_file.read_text(encoding="utf-8")
    scripted.on("curl", returncode=6, stderr="curl: (6) Could not resolve host")

    with pytest.raises(RepositoryError, match="Could not resolve host"):
        repository.register(repository.definition_line("amd64", "jammy"))

    assert config.key_path.read_bytes() == key
    assert config.sources_file.read_text(encoding="utf-8") == sources
    assert sorted(path.name for path in config.keyrings_dir.iterdir()) == [config.key_path.name]
    assert sorted(path.name for path in config.sources_file.parent.iterdir()) == ["docker.list"]


def test_failed_update_restores_previous_sources(
    fake_guest: FakeGuest, scripted: ScriptedExecutor
) -> None:
    """Files overwritten before the failing stage are put back."""
    repository, _runner = _repository(fake_guest, scripted)
    config = fake_guest.config()
    repository.register(repository.definition_line("amd64", "focal"))
    sources = config.sources_file.read_text(encoding="utf-8")
    fake_guest.fail_update = True

    with pytest.raises(RepositoryError):
        repository.register(repository.definition_line("amd64", "jammy"))

    assert config.sources_file.read_text(encoding="utf-8") == sources
    assert config.key_path.exists()
    assert not config.sources_file.with_name("docker.list.wsldockctl-backup").exists()


def test_successful_registration_leaves_no_backups(
    fake_guest: FakeGuest, scripted: ScriptedExecutor
) -> None:
    repository, _runner = _repository(fake_guest, scripted)
    config = fake_guest.config()
    repository.register(repository.definition_line("amd64", "focal"))

    repository.register(repository.definition_line("amd64", "jammy"))

    assert config.sources_file.read_text(encoding="utf-8").split()[-2] == "jammy"
    assert sorted(path.name for path in config.keyrings_dir.iterdir()) == [config.key_path.name]


def test_extra_whitespace_still_registered(
    fake_guest: FakeGuest, scripted: ScriptedExecutor
) -> None:
    """apt splits fields on any whitespace, so spacing runs do not matter."""
    repository, _runner = _repository(fake_guest, scripted)
    config = fake_guest.config()
    line = repository.definition_line("amd64", "jammy")
    repository.register(line)
    config.sources_file.write_text(line.replace(" jammy", "       jammy") + "\n", encoding="utf-8")

    assert repository.is_registered(line) is True

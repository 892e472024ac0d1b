"""Structured editor for ``/etc/wsl.conf``.

The file is INI-like but hand-edited, so it is never round-tripped through
:mod:`configparser`: comments, spacing and key order must survive untouched.
:class:`BootConfig` keeps every original line and only rewrites the
``systemd`` key inside ``[boot]``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from ..commands import CommandRunner
from ..pipeline.models import ProvisionError

_SECTION_RE = re.compile(r"^\s*\[([^\]]*)\]\s*(?:[#;].*)?$")
_KEY_RE = re.compile(r"^\s*([A-Za-z0-9_.-]+)\s*=\s*(.*?)\s*$")

BOOT_SECTION = "boot"
SYSTEMD_KEY = "systemd"
SYSTEMD_LINE = "systemd=true"


class BootConfigError(ProvisionError):
    """Raised when ``wsl.conf`` cannot be read or written."""


@dataclass(slots=True)
class Section:
    """A ``[name]`` header and the raw lines that follow it."""

    header: str
    name: str
    lines: list[str] = field(default_factory=list)


def _key_of(line: str) -> tuple[str, str] | None:
    stripped = line.lstrip()
    if not stripped or stripped[0] in "#;":
        return None
    match = _KEY_RE.match(line)
    if match is None:
        return None
    return match.group(1), match.group(2)


def _is_systemd_line(line: str) -> bool:
    parsed = _key_of(line)
    return parsed is not None and parsed[0].lower() == SYSTEMD_KEY


@dataclass(slots=True)
class BootConfig:
    """Ordered, lossless model of a ``wsl.conf`` file."""

    preamble: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    trailing_newline: bool = True

    @classmethod
    def parse(cls, text: str) -> BootConfig:
        """Build a model from *text*; :meth:`serialize` reproduces it exactly."""
        config = cls(trailing_newline=text.endswith("\n") or not text)
        if not text:
            return config
        body = text[:-1] if text.endswith("\n") else text
        current: list[str] = config.preamble
        for line in body.split("\n"):
            match = _SECTION_RE.match(line)
            if match is not None:
                section = Section(header=line, name=match.group(1).strip().lower())
                config.sections.append(section)
                current = section.lines
                continue
            current.append(line)
        return config

    def serialize(self) -> str:
        """Return the file contents."""
        lines = list(self.preamble)
        for section in self.sections:
            lines.append(section.header)
            lines.extend(section.lines)
        if not lines:
            return ""
        text = "\n".join(lines)
        return text + "\n" if self.trailing_newline else text

    def boot_sections(self) -> list[Section]:
        """Return every ``[boot]`` section in file order."""
        return [section for section in self.sections if section.name == BOOT_SECTION]

    def systemd_values(self) -> list[str]:
        """Return the values of every ``systemd`` key under ``[boot]``."""
        values: list[str] = []
        for section in self.boot_sections():
            for line in section.lines:
                parsed = _key_of(line)
                if parsed is not None and parsed[0].lower() == SYSTEMD_KEY:
                    values.append(parsed[1])
        return values

    def systemd_enabled(self) -> bool:
        """Return ``True`` when ``[boot]`` holds exactly one ``systemd=true``."""
        values = self.systemd_values()
        if len(values) != 1:
            return False
        value = re.split(r"\s[#;]", values[0], maxsplit=1)[0]
        return value.strip().lower() == "true"

    def enable_systemd(self) -> bool:
        """Make ``systemd=true`` the only systemd key; return whether anything changed."""
        if self.systemd_enabled():
            return False

        boot = self.boot_sections()
        if not boot:
            tail = self.sections[-1].lines if self.sections else self.preamble
            if (self.preamble or self.sections) and (not tail or tail[-1].strip()):
                tail.append("")
            self.sections.append(
                Section(header=f"[{BOOT_SECTION}]", name=BOOT_SECTION, lines=[SYSTEMD_LINE])
            )
            self.trailing_newline = True
            return True

        first = boot[0]
        position: int | None = None
        for index, line in enumerate(first.lines):
            if _is_systemd_line(line):
                position = index
                break
        for section in boot:
            section.lines[:] = [line for line in section.lines if not _is_systemd_line(line)]
        first.lines.insert(position if position is not None else 0, SYSTEMD_LINE)
        self.trailing_newline = True
        return True


def load_boot_config(path: Path) -> BootConfig:
    """Read *path*; a missing file yields an empty model."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return BootConfig()
    except OSError as exc:
        raise BootConfigError(f"Unable to read {path}: {exc}") from exc
    return BootConfig.parse(text)


def backup_path(path: Path) -> Path:
    """Return the path the pre-edit copy of *path* is written to."""
    return path.with_name(f"{path.name}.backup")


def save_boot_config(config: BootConfig, path: Path, runner: CommandRunner) -> Path | None:
    """Back up *path* (when it exists) and write *config*; return the backup path."""
    backup: Path | None = None
    try:
        if path.exists():
            backup = backup_path(path)
            runner.copy_file(path, backup, privileged=True)
        runner.write_text(path, config.serialize(), privileged=True, mode=0o644)
    except OSError as exc:
        raise BootConfigError(f"Unable to write {path}: {exc}") from exc
    return backup


__all__ = [
    "BootConfig",
    "BootConfigError",
    "Section",
    "backup_path",
    "load_boot_config",
    "save_boot_config",
]

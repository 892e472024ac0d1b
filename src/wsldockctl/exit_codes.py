"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Deferrals (a restart is required) and user cancellations exit with
    ``OK``; only hard failures use ``FAILURE``.
    """

    OK = 0
    FAILURE = 1

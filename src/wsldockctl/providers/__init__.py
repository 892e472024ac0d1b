"""Providers wrapping guest system services."""
from __future__ import annotations

from .systemd import HEALTHY_SYSTEM_STATES, SystemdError, SystemdProvider

__all__ = ["HEALTHY_SYSTEM_STATES", "SystemdError", "SystemdProvider"]

"""Windows host provisioning."""
from __future__ import annotations

from .probes import (
    HostProbeError,
    RegistryReader,
    WindowsVersion,
    WinRegReader,
    is_restart_pending,
    meets_minimum,
    pending_restart_indicators,
    read_windows_version,
)
from .provisioner import HostContext, host_steps
from .wsl import WslProvider, find_distribution, parse_distribution_list

__all__ = [
    "HostContext",
    "HostProbeError",
    "RegistryReader",
    "WinRegReader",
    "WindowsVersion",
    "WslProvider",
    "find_distribution",
    "host_steps",
    "is_restart_pending",
    "meets_minimum",
    "parse_distribution_list",
    "pending_restart_indicators",
    "read_windows_version",
]

"""WSL guest provisioning: packages, repository, groups, boot config."""
from __future__ import annotations

from .accounts import GroupMembershipPlan, GroupMembershipSpec, plan_group_membership
from .apt import AptProvider
from .probes import GuestProbeError, WslGeneration, detect_wsl_generation, invoking_user, user_home
from .provisioner import GuestContext, guest_steps
from .repository import DockerRepository, RepositoryError
from .verification import VerifyContext, verify_steps, write_verification_script
from .wslconf import BootConfig, BootConfigError, load_boot_config, save_boot_config

__all__ = [
    "AptProvider",
    "BootConfig",
    "BootConfigError",
    "DockerRepository",
    "GroupMembershipPlan",
    "GroupMembershipSpec",
    "GuestContext",
    "GuestProbeError",
    "RepositoryError",
    "VerifyContext",
    "WslGeneration",
    "detect_wsl_generation",
    "guest_steps",
    "invoking_user",
    "load_boot_config",
    "plan_group_membership",
    "save_boot_config",
    "user_home",
    "verify_steps",
    "write_verification_script",
]

"""Build settings and invocation validation.

Settings have sensible defaults and can be overridden with IMGOPS_*
environment variables. Invalid environment values are ignored and the
default is used instead, so a typo never breaks a build. CLI options are
applied on top of the loaded settings by the CLI layer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

from imgops.core.errors import ConfigurationError

RESOURCES_DIR = Path(__file__).resolve().parents[1] / "resources"

DEFAULT_TEMPLATE = RESOURCES_DIR / "build-vm.json"
DEFAULT_CUSTOMIZE_SCRIPT = RESOURCES_DIR / "customize.ps1"
DEFAULT_SYSPREP_SCRIPT = RESOURCES_DIR / "sysprep.ps1"

VM_RESOURCE_KIND = "Microsoft.Compute/virtualMachines"


@dataclass(frozen=True)
class BuildSettings:
    """
    Tunables for an image build.

    Attributes:
        prefix: Name prefix shared by all resources.
        location: Default Azure region.
        max_vms: Maximum number of VMs allowed in a job resource group.
        job_min: Lowest valid job number.
        job_max: Highest valid job number.
        poll_interval: Seconds between power-state polls.
        shutdown_timeout: Seconds to wait for the VM to stop after sysprep.
        ready_timeout: Seconds to wait for the VM to run before customizing.
        admin_username: Admin account created on the build VM.
        vm_size: Azure VM size of the build VM.
        hyper_v_generation: Image generation ("V1" or "V2").
        log_dir: Directory receiving the per-run log file.
        template_path: ARM template deployed by the provisioner.
        customize_script: In-guest customization script.
        sysprep_script: In-guest generalization script.
    """

    prefix: str = "lab"
    location: str = "westeurope"
    max_vms: int = 1
    job_min: int = 1
    job_max: int = 40
    poll_interval: int = 30
    shutdown_timeout: int = 20 * 60
    ready_timeout: int = 10 * 60
    admin_username: str = "imgbuildadmin"
    vm_size: str = "Standard_D2s_v3"
    hyper_v_generation: str = "V2"
    log_dir: Path = Path("logs")
    template_path: Path = DEFAULT_TEMPLATE
    customize_script: Path = DEFAULT_CUSTOMIZE_SCRIPT
    sysprep_script: Path = DEFAULT_SYSPREP_SCRIPT

    def with_overrides(self, **overrides) -> BuildSettings:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


_INT_ENV = {
    "IMGOPS_MAX_VMS": "max_vms",
    "IMGOPS_JOB_MAX": "job_max",
    "IMGOPS_POLL_INTERVAL": "poll_interval",
    "IMGOPS_SHUTDOWN_TIMEOUT": "shutdown_timeout",
    "IMGOPS_READY_TIMEOUT": "ready_timeout",
}

_STR_ENV = {
    "IMGOPS_PREFIX": "prefix",
    "IMGOPS_LOCATION": "location",
    "IMGOPS_ADMIN_USERNAME": "admin_username",
    "IMGOPS_VM_SIZE": "vm_size",
}


def _env_int(raw: str | None) -> int | None:
    """Parse a positive integer, returning None for missing or invalid input."""
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def load_settings(environ: Mapping[str, str] | None = None) -> BuildSettings:
    """Build settings from defaults plus IMGOPS_* environment overrides."""
    env = os.environ if environ is None else environ
    overrides: dict[str, object] = {}

    for var, attr in _INT_ENV.items():
        value = _env_int(env.get(var))
        if value is not None:
            overrides[attr] = value

    for var, attr in _STR_ENV.items():
        value = (env.get(var) or "").strip()
        if value:
            overrides[attr] = value

    log_dir = (env.get("IMGOPS_LOG_DIR") or "").strip()
    if log_dir:
        overrides["log_dir"] = Path(log_dir)

    return BuildSettings().with_overrides(**overrides)


def validate_job_number(job_number: int, settings: BuildSettings) -> int:
    """Reject job numbers outside the configured range."""
    if not settings.job_min <= job_number <= settings.job_max:
        raise ConfigurationError(
            f"Job number {job_number} is out of range "
            f"({settings.job_min}..{settings.job_max})."
        )
    return job_number

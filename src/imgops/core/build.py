"""Core build domain models.

This module defines the data structures that flow through an image build:
the build job itself, the authenticated context it runs under, and the
values returned by the individual pipeline stages. It is intentionally
free of Azure SDK types and CLI concerns so the same models can be used
by the orchestrator, the adapters and the tests.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from imgops.core.naming import NameSet


class BuildStage(str, Enum):
    """
    Position of a build in the pipeline.

    Stages are strictly linear. A build only moves forward; a fatal failure
    leaves the job at the last stage it completed.
    """

    INIT = "Init"
    QUOTA_CHECKED = "QuotaChecked"
    PROVISIONED = "Provisioned"
    CUSTOMIZED = "Customized"
    SYSPREPPED = "Sysprepped"
    SHUTDOWN_CONFIRMED = "ShutdownConfirmed"
    CAPTURED = "Captured"
    CLEANED_UP = "CleanedUp"
    DONE = "Done"


PIPELINE: tuple[BuildStage, ...] = tuple(BuildStage)


class PowerState(str, Enum):
    """
    Provider-reported VM power state.

    Only STOPPED and DEALLOCATED end a shutdown wait; everything else,
    including UNKNOWN, is treated as still in progress.
    """

    RUNNING = "running"
    STARTING = "starting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DEALLOCATING = "deallocating"
    DEALLOCATED = "deallocated"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> PowerState:
        """Map a raw status code such as 'PowerState/running' to a PowerState."""
        if not value:
            return cls.UNKNOWN
        raw = value.strip().lower()
        if "/" in raw:
            raw = raw.rsplit("/", 1)[-1]
        if raw.startswith("vm "):
            raw = raw[3:]
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_shut_down(self) -> bool:
        return self in (PowerState.STOPPED, PowerState.DEALLOCATED)


@dataclass(frozen=True)
class AdminCredentials:
    """Transient admin login for the build VM. Never logged or persisted."""

    username: str
    password: str = field(repr=False)

    @classmethod
    def generate(cls, username: str, length: int = 24) -> AdminCredentials:
        """Create a random password that satisfies Azure's complexity rules."""
        alphabet = string.ascii_letters + string.digits
        core = "".join(secrets.choice(alphabet) for _ in range(max(length - 4, 8)))
        # one of each class required by Azure VM passwords
        required = (
            secrets.choice(string.ascii_uppercase)
            + secrets.choice(string.ascii_lowercase)
            + secrets.choice(string.digits)
            + secrets.choice("!@#%^*-_=+")
        )
        return cls(username=username, password=core + required)


@dataclass(frozen=True)
class AuthContext:
    """
    Authenticated Azure context for one run.

    Attributes:
        tenant_id: Directory (tenant) the principal signed in to.
        subscription_id: Subscription all resources are created in.
        principal: Display name of the signed-in user or service principal.
        credential: Live azure-identity credential object used by adapters.
    """

    tenant_id: str
    subscription_id: str
    principal: str
    credential: Any = field(default=None, repr=False, compare=False)


@dataclass
class BuildJob:
    """
    The unit of work for one image build.

    The job is created when a build is requested and mutated stage by stage
    by the orchestrator. Nothing about it is persisted: a crashed run is
    resumed by building again against the same resource group.
    """

    job_number: int
    build_timestamp: str
    names: NameSet
    location: str
    credentials: AdminCredentials | None = None
    stage: BuildStage = BuildStage.INIT

    @property
    def resource_group(self) -> str:
        return self.names.resource_group

    @property
    def vm_name(self) -> str:
        return self.names.vm_name


@dataclass(frozen=True)
class ResourceRef:
    """A named Azure resource of a given kind (e.g. Microsoft.Compute/virtualMachines)."""

    name: str
    kind: str


@dataclass(frozen=True)
class ProvisionResult:
    """Outputs of a successful template deployment."""

    vm_id: str
    vm_name: str
    public_address: str | None
    network_id: str
    deployment_name: str = ""
    outputs: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunResult:
    """Synchronous reply of an in-guest script execution."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ImageHandle:
    """The durable output artifact of a build."""

    id: str
    name: str


@dataclass(frozen=True)
class CleanupResult:
    """Result of deleting a single ephemeral resource."""

    kind: str
    name: str
    deleted: bool
    error: str | None = None

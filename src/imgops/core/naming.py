"""Deterministic resource naming for image builds.

Durable names (resource group, network, security group) only depend on the
job number so the next build for the same job slot reuses them. Ephemeral
names additionally carry the build timestamp so every build gets its own
VM, disk, public IP, NIC and image.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass(frozen=True)
class NameSet:
    """All resource names used by one build."""

    resource_group: str
    network_name: str
    nsg_name: str
    vm_name: str
    public_ip_name: str
    nic_name: str
    os_disk_name: str
    image_name: str

    def durable(self) -> tuple[str, ...]:
        return (self.resource_group, self.network_name, self.nsg_name)

    def ephemeral(self) -> tuple[str, ...]:
        return (
            self.vm_name,
            self.public_ip_name,
            self.nic_name,
            self.os_disk_name,
            self.image_name,
        )


def new_build_timestamp(now: datetime | None = None) -> str:
    """Return a UTC build timestamp in the form YYYYMMDDHHMMSS."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


def resource_group_name(job_number: int, prefix: str) -> str:
    """Return the durable resource group of a job slot."""
    return f"rg-{prefix}-customimage-job{int(job_number)}"


def resolve_names(job_number: int, build_timestamp: str, prefix: str) -> NameSet:
    """
    Derive every resource name for a build.

    Args:
        job_number: Job (student) slot, already range-checked by the caller.
        build_timestamp: Build timestamp from new_build_timestamp().
        prefix: Short lowercase name prefix shared by all resources.

    Returns:
        The NameSet for this (job_number, build_timestamp) pair.
    """
    n = int(job_number)
    ts = str(build_timestamp)
    return NameSet(
        resource_group=resource_group_name(n, prefix),
        network_name=f"{prefix}-image-vnet-job{n}",
        nsg_name=f"{prefix}-image-nsg-job{n}",
        vm_name=f"{prefix}-build-vm-{ts}",
        public_ip_name=f"{prefix}-build-pip-{ts}",
        nic_name=f"{prefix}-build-nic-{ts}",
        os_disk_name=f"{prefix}-build-osdisk-{ts}",
        image_name=f"{prefix}-custom-image-job{n}-{ts}",
    )

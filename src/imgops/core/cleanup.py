"""Deletion of the per-build ephemeral resources.

Only the VM, its OS disk, its NIC and its public IP are removed. The
durable network resources and the captured image stay in the resource
group. Every deletion is attempted independently; a failure is recorded
in that resource's result and never stops the remaining deletions.
"""

from __future__ import annotations

from typing import Protocol

from imgops.core.build import CleanupResult
from imgops.core.errors import CleanupError
from imgops.core.naming import NameSet

VM = "virtualMachine"
DISK = "disk"
NIC = "networkInterface"
PUBLIC_IP = "publicIPAddress"


class CleanupAdapter(Protocol):
    """Interface for deleting ephemeral build resources."""

    def delete_vm(self, resource_group: str, name: str) -> None: ...

    def delete_disk(self, resource_group: str, name: str) -> None: ...

    def delete_nic(self, resource_group: str, name: str) -> None: ...

    def delete_public_ip(self, resource_group: str, name: str) -> None: ...


def ephemeral_targets(names: NameSet) -> list[tuple[str, str]]:
    """Return (kind, name) pairs in deletion order: VM, disk, NIC, public IP."""
    return [
        (VM, names.vm_name),
        (DISK, names.os_disk_name),
        (NIC, names.nic_name),
        (PUBLIC_IP, names.public_ip_name),
    ]


def cleanup(adapter: CleanupAdapter, names: NameSet) -> list[CleanupResult]:
    """
    Delete the ephemeral resources of one build.

    A NIC cannot be removed while a VM still references it, and a public IP
    cannot be removed while attached to a NIC, hence the fixed order.
    """
    deleters = {
        VM: adapter.delete_vm,
        DISK: adapter.delete_disk,
        NIC: adapter.delete_nic,
        PUBLIC_IP: adapter.delete_public_ip,
    }
    results: list[CleanupResult] = []

    for kind, name in ephemeral_targets(names):
        try:
            deleters[kind](names.resource_group, name)
            results.append(CleanupResult(kind=kind, name=name, deleted=True))
        except Exception as e:  # noqa: BLE001
            results.append(
                CleanupResult(kind=kind, name=name, deleted=False, error=str(e))
            )

    return results


def cleanup_error(names: NameSet, results: list[CleanupResult]) -> CleanupError | None:
    """Aggregate failed deletions into a CleanupError, or None when all succeeded."""
    failed = [r for r in results if r.error]
    if not failed:
        return None
    return CleanupError(
        f"{len(failed)} ephemeral resource(s) could not be deleted: "
        + ", ".join(f"{r.name} ({r.error})" for r in failed),
        failed,
        context={"resource_group": names.resource_group, "vm": names.vm_name},
    )

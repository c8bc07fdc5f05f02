"""Image capture from a generalized VM.

Capturing is irreversible: once the VM is marked generalized it can no
longer be booted normally. If anything fails here the VM is kept so it can
be inspected by hand; nothing in this module deletes resources.
"""

from __future__ import annotations

from typing import Protocol

from imgops.core.build import ImageHandle, PowerState
from imgops.core.errors import CaptureError
from imgops.core.runlog import BuildLog


class CaptureAdapter(Protocol):
    """Interface for deallocate/generalize/image operations."""

    def deallocate_vm(self, resource_group: str, vm_name: str) -> None:
        """Deallocate a VM and wait for the operation to finish."""
        ...

    def generalize_vm(self, resource_group: str, vm_name: str) -> None:
        """Mark a VM as generalized."""
        ...

    def create_image(
        self,
        resource_group: str,
        image_name: str,
        vm_name: str,
        location: str,
        hyper_v_generation: str,
    ) -> ImageHandle:
        """Create a managed image from a VM and wait for it."""
        ...


def capture(
    adapter: CaptureAdapter,
    resource_group: str,
    vm_name: str,
    image_name: str,
    location: str,
    *,
    power_state: PowerState,
    hyper_v_generation: str = "V2",
    log: BuildLog | None = None,
) -> ImageHandle:
    """
    Turn a shut-down VM into a managed image.

    Args:
        adapter: Adapter for compute operations.
        resource_group: Resource group of the VM and the image.
        vm_name: Source VM, already shut down after sysprep.
        image_name: Name of the image to create.
        location: Region of the image.
        power_state: Last power state seen by the shutdown monitor.
        hyper_v_generation: Hypervisor generation of the image.
        log: Optional run log.

    Returns:
        The ImageHandle of the new image.

    Raises:
        CaptureError: If any step fails. The VM is never deleted here.
    """
    context = {"resource_group": resource_group, "vm": vm_name, "image": image_name}
    if not power_state.is_shut_down:
        raise CaptureError(
            f"VM '{vm_name}' must be stopped before capture (state: {power_state.value})",
            context=context,
        )

    step = "deallocate"
    try:
        if power_state != PowerState.DEALLOCATED:
            if log:
                log.info(f"Deallocating '{vm_name}' before capture")
            adapter.deallocate_vm(resource_group, vm_name)

        step = "generalize"
        if log:
            log.info(f"Marking '{vm_name}' as generalized")
        adapter.generalize_vm(resource_group, vm_name)

        step = "create image"
        if log:
            log.info(f"Creating image '{image_name}' ({hyper_v_generation}) in {location}")
        image = adapter.create_image(
            resource_group, image_name, vm_name, location, hyper_v_generation
        )
    except CaptureError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise CaptureError(
            f"Capture failed during {step}: {exc}. "
            f"VM '{vm_name}' was kept for debugging.",
            context=context,
        ) from exc

    return image

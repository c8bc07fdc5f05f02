from __future__ import annotations

import re

from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.compute.models import Image, RunCommandInput, SubResource
from azure.mgmt.network import NetworkManagementClient

from imgops.core.build import AuthContext, ImageHandle, PowerState, RunResult

WINDOWS_COMMAND = "RunPowerShellScript"
LINUX_COMMAND = "RunShellScript"

_MARKER_RE = re.compile(r"\[(stdout|stderr)\]\s*\n?", re.IGNORECASE)


def _split_markers(message: str) -> tuple[str, str]:
    """Split a Linux-style '[stdout] ... [stderr] ...' message into its parts."""
    parts = _MARKER_RE.split(message or "")
    out, err = [], []
    for label, body in zip(parts[1::2], parts[2::2]):
        (out if label.lower() == "stdout" else err).append(body.strip())
    return "\n".join(out), "\n".join(err)


def parse_run_command_result(result) -> RunResult:
    """
    Convert a RunCommandResult into a RunResult.

    Windows run-commands report stdout and stderr as separate statuses
    (ComponentStatus/StdOut/..., ComponentStatus/StdErr/...); Linux ones
    return a single message with [stdout]/[stderr] markers. The run-command
    API has no exit code, so any error status or stderr output counts as
    exit code 1.
    """
    stdout: list[str] = []
    stderr: list[str] = []
    failed = False

    for status in getattr(result, "value", None) or []:
        code = (getattr(status, "code", "") or "").lower()
        message = getattr(status, "message", "") or ""
        level = str(getattr(status, "level", "") or "").lower()
        if level.endswith("error") or code.endswith("/failed"):
            failed = True
        if "/stdout/" in code:
            stdout.append(message)
        elif "/stderr/" in code:
            stderr.append(message)
        elif "[stdout]" in message.lower() or "[stderr]" in message.lower():
            out, err = _split_markers(message)
            stdout.append(out)
            stderr.append(err)
        elif message:
            stdout.append(message)

    out_text = "\n".join(s for s in stdout if s).strip()
    err_text = "\n".join(s for s in stderr if s).strip()
    exit_code = 1 if failed or err_text else 0
    return RunResult(exit_code=exit_code, stdout=out_text, stderr=err_text)


class AzureComputeAdapter:
    """Adapter around Azure compute and network APIs used by a build VM."""

    def __init__(
        self,
        compute: ComputeManagementClient,
        network: NetworkManagementClient,
        *,
        command_id: str = WINDOWS_COMMAND,
    ):
        self.compute = compute
        self.network = network
        self.command_id = command_id

    @classmethod
    def from_auth(cls, auth: AuthContext, **kwargs) -> AzureComputeAdapter:
        return cls(
            ComputeManagementClient(auth.credential, auth.subscription_id),
            NetworkManagementClient(auth.credential, auth.subscription_id),
            **kwargs,
        )

    def run_script(self, resource_group: str, vm_name: str, script: str) -> RunResult:
        """Run a script through run-command and block until it has finished."""
        poller = self.compute.virtual_machines.begin_run_command(
            resource_group,
            vm_name,
            RunCommandInput(command_id=self.command_id, script=script.splitlines()),
        )
        return parse_run_command_result(poller.result())

    def get_power_state(self, resource_group: str, vm_name: str) -> PowerState:
        """Return the PowerState/* status of a VM's instance view."""
        view = self.compute.virtual_machines.instance_view(resource_group, vm_name)
        for status in view.statuses or []:
            if status.code and status.code.startswith("PowerState/"):
                return PowerState.parse(status.code)
        return PowerState.UNKNOWN

    def deallocate_vm(self, resource_group: str, vm_name: str) -> None:
        self.compute.virtual_machines.begin_deallocate(resource_group, vm_name).result()

    def generalize_vm(self, resource_group: str, vm_name: str) -> None:
        self.compute.virtual_machines.generalize(resource_group, vm_name)

    def create_image(
        self,
        resource_group: str,
        image_name: str,
        vm_name: str,
        location: str,
        hyper_v_generation: str,
    ) -> ImageHandle:
        """Create a managed image from a generalized VM and wait for it."""
        vm = self.compute.virtual_machines.get(resource_group, vm_name)
        params = Image(
            location=location,
            hyper_v_generation=hyper_v_generation,
            source_virtual_machine=SubResource(id=vm.id),
        )
        image = self.compute.images.begin_create_or_update(
            resource_group, image_name, params
        ).result()
        return ImageHandle(id=image.id, name=image.name or image_name)

    def list_images(self, resource_group: str) -> list[ImageHandle]:
        """List managed images in a resource group."""
        return [
            ImageHandle(id=img.id, name=img.name)
            for img in self.compute.images.list_by_resource_group(resource_group)
            if img.name
        ]

    def delete_vm(self, resource_group: str, name: str) -> None:
        self.compute.virtual_machines.begin_delete(resource_group, name).result()

    def delete_disk(self, resource_group: str, name: str) -> None:
        self.compute.disks.begin_delete(resource_group, name).result()

    def delete_nic(self, resource_group: str, name: str) -> None:
        self.network.network_interfaces.begin_delete(resource_group, name).result()

    def delete_public_ip(self, resource_group: str, name: str) -> None:
        self.network.public_ip_addresses.begin_delete(resource_group, name).result()
